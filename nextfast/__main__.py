from nextfast.cli import main

main()
