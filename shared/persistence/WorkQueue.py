"""File-based work queue: one JSON file per inbound mail in the input directory."""

from pathlib import Path

from shared.helper.HelperConfig import HelperConfig
from shared.helper.HelperFile import HelperFile
from shared.models.work_item import WorkItem


class WorkQueue:
    def __init__(self, helper_config: HelperConfig, input_dir: Path | None = None, quarantine_dir: Path | None = None):
        self.logging = helper_config.get_logger()
        storage_root = None
        if input_dir is None or quarantine_dir is None:
            storage_root = helper_config.get_path_val("STORAGE_PATH", default="./storage")
        self.input_dir = input_dir or storage_root / helper_config.get_string_val("QUEUE_INPUT_DIR", default="00_mail_in")
        self.quarantine_dir = quarantine_dir or storage_root / helper_config.get_string_val("QUEUE_QUARANTINE_DIR", default="quarantine")

    async def ensure_dirs(self) -> None:
        await HelperFile.ensure_dir(self.input_dir)
        await HelperFile.ensure_dir(self.quarantine_dir)

    def list_items(self) -> list[Path]:
        """Queued item files in name order."""
        return HelperFile.list_files(self.input_dir, ".json")

    async def read_item(self, path: Path) -> WorkItem:
        """Read and validate one item file.

        Raises:
            FileNotFoundError: If the item vanished.
            json.JSONDecodeError: If the file is not valid JSON.
            pydantic.ValidationError: If required keys are missing.
        """
        raw = await HelperFile.read_json(path)
        return WorkItem.model_validate(raw)

    async def save_item(self, path: Path, item: WorkItem) -> None:
        await HelperFile.write_json_atomic(path, item.to_file_payload())

    async def delete_item(self, path: Path) -> None:
        await HelperFile.delete_file(path)

    async def quarantine(self, path: Path, reason: str) -> Path:
        """Move an item into the quarantine directory as ``<reason>_<filename>``.

        Returns:
            Path: The new location of the item.
        """
        target = self.quarantine_dir / f"{reason}_{path.name}"
        await HelperFile.move_file(path, target)
        self.logging.error("[QUEUE] Item moved to quarantine: %s -> %s", reason, target)
        return target

    def count_items(self) -> int:
        return len(self.list_items())

    def count_quarantined(self) -> int:
        return len(HelperFile.list_files(self.quarantine_dir, ".json"))
