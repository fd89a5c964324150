from loadgen.loadtest import main

main()
