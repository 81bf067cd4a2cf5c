"""next-fast: scaffold preconfigured Next.js projects."""

__version__ = "0.3.0"
