from pathlib import Path

from ralphloop.event_bus import EventBus, RalphEvent


class AuditLogger:
    """
    Subscribes to an EventBus and appends every controller event
    to an append-only JSONL file.
    """

    def __init__(self, file_path: Path, event_bus: EventBus):
        self.file_path = Path(file_path)
        self.event_bus = event_bus
        self.event_bus.subscribe(self.log_event)

    def log_event(self, event: RalphEvent) -> None:
        self.file_path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.file_path, "a", encoding="utf-8") as f:
            f.write(event.model_dump_json() + "\n")
