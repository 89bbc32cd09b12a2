"""Soft delete and undo.

Deleted files are moved into a ``.trash_<ms>`` folder beside them and can be
restored within the undo window (300 seconds by default).
"""

from __future__ import annotations

import tempfile
from pathlib import Path

from mediaops import Delete, EngineConfig, OperationOrchestrator

if __name__ == "__main__":
    with tempfile.TemporaryDirectory() as tmp:
        photos = Path(tmp, "photos")
        photos.mkdir()
        for i in range(1, 4):
            (photos / f"{i}.jpg").write_bytes(b"jpeg")

        with OperationOrchestrator(config=EngineConfig(trash_ttl_seconds=60)) as engine:
            result = engine.execute(Delete([str(p) for p in sorted(photos.iterdir())]))
            print("Delete:", result)
            print("Left in folder:", sorted(p.name for p in photos.iterdir()))

            undo = engine.get_pending_undo()
            assert undo is not None
            print(f"Undo available for {undo.remaining(undo.created_at):.0f}s: {len(undo.original_paths)} file(s)")

            print("Restore:", engine.restore())
            print("Back in folder:", sorted(p.name for p in photos.iterdir()))

            # --- Permanent delete bypasses the trash ---
            engine.execute(Delete([str(photos / "1.jpg")], permanent=True))
            print("Undo after permanent delete:", engine.get_pending_undo())

    print("\nDone!")
