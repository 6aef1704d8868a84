from tagl.cli import main

main()
