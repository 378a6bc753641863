from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional, Union

@dataclass
class GpuDescriptor:
    index: int
    card: str
    name: str
    driver: Optional[str] = None
    pci_slot: Optional[str] = None
    render_node: Optional[str] = None
    renderer: Optional[str] = None

@dataclass(frozen=True)
class GpuChoice:
    index: Optional[int] = None     # None = Default (do not override)

    @classmethod
    def default(cls) -> "GpuChoice":
        return cls(None)

    @classmethod
    def gpu(cls, index: int) -> "GpuChoice":
        return cls(int(index))

    @property
    def is_default(self) -> bool:
        return self.index is None

    def label(self) -> str:
        return "Default GPU" if self.index is None else f"GPU {self.index}"

    def to_json(self) -> dict:
        if self.index is None:
            return {"type": "Default"}
        return {"type": "Gpu", "value": self.index}

    @classmethod
    def from_json(cls, data) -> "GpuChoice":
        if isinstance(data, dict) and data.get("type") == "Gpu":
            value = data.get("value")
            if isinstance(value, int) and not isinstance(value, bool) and value >= 0:
                return cls.gpu(value)
        return cls.default()

    @classmethod
    def parse(cls, raw: Optional[str]) -> "GpuChoice":
        """Form value -> choice: "default"/"" or a decimal index."""
        s = (raw or "").strip().lower()
        if s.isdigit():
            return cls.gpu(int(s))
        return cls.default()

@dataclass(frozen=True)
class NativeSurface:
    kind: str = "native"

@dataclass(frozen=True)
class SteamSurface:
    app_id: Optional[str]
    kind: str = "steam"

@dataclass(frozen=True)
class HeroicSurface:
    platform: Optional[str]
    app_name: Optional[str]
    kind: str = "heroic"

@dataclass(frozen=True)
class FlatpakSurface:
    app_id: Optional[str]
    kind: str = "flatpak"

Surface = Union[NativeSurface, SteamSurface, HeroicSurface, FlatpakSurface]

@dataclass
class LaunchDescriptor:
    desktop_id: str
    path: Path
    name: str
    icon: Optional[str]
    exec: str                       # field codes stripped, whitespace collapsed
    surface: Surface = field(default_factory=NativeSurface)

    @property
    def kind(self) -> str:
        return self.surface.kind

@dataclass(frozen=True)
class EnvironmentProfile:
    is_nvidia: bool = False
    is_mesa: bool = False
    mesa_device_selector: Optional[str] = None

@dataclass
class OverrideResult:
    surface: str
    targets: List[str] = field(default_factory=list)
    changed: bool = False
    warnings: List[str] = field(default_factory=list)
