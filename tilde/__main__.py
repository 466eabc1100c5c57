from tilde.tilde_repl import main

main()
