from sargen.pipeline import main

main()
