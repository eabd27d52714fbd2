from metabase_mcp.server import main

main()
