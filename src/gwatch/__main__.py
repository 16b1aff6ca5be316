from gwatch.cli import main

main()
