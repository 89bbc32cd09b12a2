"""Quickstart: copy, move and rename files between folders, with progress.

Local folders stand in for a NAS share here; point the destination at
``smb://``, ``sftp://``, ``ftp://`` or ``cloud://`` once credentials are stored.
"""

from __future__ import annotations

import tempfile
from pathlib import Path

from mediaops import Copy, EngineConfig, Move, OperationOrchestrator, Rename, SmartRenamePolicy, Success

if __name__ == "__main__":
    with tempfile.TemporaryDirectory() as tmp:
        camera = Path(tmp, "DCIM", "Camera")
        camera.mkdir(parents=True)
        for name in ("IMG_0001.jpg", "IMG_0002.jpg"):
            (camera / name).write_bytes(b"\xff\xd8\xff\xe0" + name.encode())
        backup = Path(tmp, "backup")
        backup.mkdir()
        (backup / "IMG_0001.jpg").write_bytes(b"older copy")

        def on_progress(resource_key: str, transferred: int, total: int) -> None:
            print(f"  {resource_key}: {transferred}/{total} bytes")

        with OperationOrchestrator(config=EngineConfig()) as engine:
            # --- Copy with smart rename on collision ---
            sources = sorted(str(p) for p in camera.iterdir())
            result = engine.execute(Copy(sources, str(backup), SmartRenamePolicy()), on_progress=on_progress)
            assert isinstance(result, Success)
            print("Copied:", [Path(p).name for p in result.resulting_paths])

            # --- Move into an album folder ---
            album = Path(tmp, "albums", "2024")
            result = engine.execute(Move([str(camera / "IMG_0002.jpg")], str(album)))
            print("Moved:", result)

            # --- Rename in place ---
            result = engine.execute(Rename(str(album / "IMG_0002.jpg"), "beach.jpg"))
            print("Renamed:", result)

    print("\nDone!")
