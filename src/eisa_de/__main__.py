from eisa_de.cli import main

main()
