from mailwatch.agent.watcher import main

main()
