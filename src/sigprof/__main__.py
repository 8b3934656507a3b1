from sigprof.cli import main

main()
