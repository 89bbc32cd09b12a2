"""Configuration from a plain dict (e.g. parsed TOML or JSON).

Shows concurrency overrides, stored credentials and a cloud provider entry.
Nothing here connects anywhere until an operation touches the backend.
"""

from __future__ import annotations

from mediaops import EngineConfig, MediaOpsError, OperationOrchestrator, resolve

RAW = {
    "trash_ttl_seconds": 300,
    "concurrency": {"smb": 2, "sftp": 3},
    "credentials": [
        {"id": "nas", "backend_type": "smb", "server": "nas.local", "username": "alice", "secret": "..."},
        {"id": "pi", "backend_type": "sftp", "server": "raspberrypi", "port": 22, "username": "pi", "secret": "..."},
        {"id": "box", "backend_type": "cloud:dropbox", "server": "dropbox", "secret": "<refresh token>"},
    ],
    "cloud": {
        "dropbox": {
            "base_url": "https://storage-gateway.example/dropbox",
            "token_url": "https://api.dropboxapi.com/oauth2/token",
            "client_id": "<app key>",
        },
    },
}

if __name__ == "__main__":
    config = EngineConfig.from_dict(RAW)
    print("Concurrency:", config.concurrency)
    print("Cloud providers:", sorted(config.cloud))

    for path in ("smb://nas.local/media/DCIM", "sftp://pi@raspberrypi/home/pi", "cloud://Dropbox/Photos"):
        locator = resolve(path)
        print(f"{path} -> {locator.backend_type} @ {locator.resource_key}")

    try:
        EngineConfig.from_dict({"trash_ttl": 60})
    except TypeError as exc:
        print(f"\nExpected error: {exc}")

    try:
        resolve("gopher://host/a.jpg")
    except MediaOpsError as exc:
        print(f"Expected error: {exc}")

    with OperationOrchestrator.from_config(config) as engine:
        print("\nEngine ready:", engine)
