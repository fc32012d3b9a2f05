# tools_manifest.py
# Writes the MCP tool manifest to .mcp.json (same as `msgraph-mcp manifest`)

from msgraph_mcp.cli import write_manifest


def main():
    manifest = write_manifest(".mcp.json")
    print(f".mcp.json manifest generated ({len(manifest['tools'])} tools).")


if __name__ == "__main__":
    main()
