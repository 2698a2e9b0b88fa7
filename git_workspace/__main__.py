from git_workspace.cli import main

main()
