"""Idempotence ledger: ids of work items that already received a reply."""

import json
from pathlib import Path

from shared.helper.HelperConfig import HelperConfig
from shared.helper.HelperFile import HelperFile

MAX_ENTRIES = 1000


class ProcessedLedger:
    def __init__(self, helper_config: HelperConfig, ledger_path: Path | None = None, max_entries: int | None = None):
        self.logging = helper_config.get_logger()
        if ledger_path is None:
            storage_root = helper_config.get_path_val("STORAGE_PATH", default="./storage")
            ledger_path = storage_root / "processed_ids.json"
        self.ledger_path = ledger_path
        self.max_entries = int(max_entries if max_entries is not None else helper_config.get_number_val("LEDGER_MAX_ENTRIES", default=MAX_ENTRIES))

    async def load(self) -> dict[str, str]:
        """Load the id → ISO timestamp map; a missing or unreadable ledger is empty."""
        try:
            raw = await HelperFile.read_json(self.ledger_path)
        except FileNotFoundError:
            return {}
        except (OSError, json.JSONDecodeError) as e:
            self.logging.warning("[LEDGER] Could not read %s, treating as empty: %s", self.ledger_path.name, e)
            return {}
        if not isinstance(raw, dict):
            return {}
        return {str(k): str(v) for k, v in raw.items()}

    async def is_processed(self, item_id: str) -> bool:
        return item_id in await self.load()

    async def mark_processed(self, item_id: str) -> None:
        """Record an id, keeping only the newest max_entries ids."""
        ids = await self.load()
        ids[item_id] = HelperFile.to_iso(HelperFile.utc_now())
        newest = sorted(ids.items(), key=lambda kv: kv[1], reverse=True)[: self.max_entries]
        await HelperFile.write_json_atomic(self.ledger_path, dict(newest))
