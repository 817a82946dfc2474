from rule2plan.cli import main

main()
