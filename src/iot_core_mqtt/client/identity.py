"""
Device Identity.

Derives the MQTT client id and the four per-device topics from the
device registry metadata.
"""
from dataclasses import dataclass


@dataclass(frozen=True)
class DeviceIdentity:
    project_id: str
    region: str
    registry_id: str
    device_id: str

    def __post_init__(self):
        missing = [name for name in ("project_id", "region", "registry_id", "device_id") if not getattr(self, name)]
        if missing:
            raise ValueError(f"Device identity is missing: {', '.join(missing)}")

    @classmethod
    def from_config(cls, config: dict) -> "DeviceIdentity":
        device_conf = config['device']
        return cls(
            project_id=device_conf.get('project_id', ''),
            region=device_conf.get('region', ''),
            registry_id=device_conf.get('registry_id', ''),
            device_id=device_conf.get('device_id', ''),
        )

    @property
    def client_id(self) -> str:
        return (f"projects/{self.project_id}/locations/{self.region}"
                f"/registries/{self.registry_id}/devices/{self.device_id}")

    @property
    def config_topic(self) -> str:
        return f"/devices/{self.device_id}/config"

    @property
    def commands_topic(self) -> str:
        # Wildcard so commands sent to subfolders are received as well
        return f"/devices/{self.device_id}/commands/#"

    @property
    def events_topic(self) -> str:
        return f"/devices/{self.device_id}/events"

    @property
    def state_topic(self) -> str:
        return f"/devices/{self.device_id}/state"
