from zminit.cli import main

main()
