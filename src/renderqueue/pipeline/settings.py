"""Per-job render settings stored as a JSON blob on the job row.

Layout::

    {
      "melt": {"video_codec": "libx264", "crf": 23, ...},
      "rife": {"model": "rife-v4.6", "multiplier": 2, ...},
      "encoder": {"video_codec": "libx264", "crf": 18, ...},
      "upscale": {"enabled": true, "engine": "realesrgan", "scale": 2}
    }

Every section is optional.
"""

import json
from dataclasses import asdict, dataclass, field, fields
from typing import Any, Dict, Optional

from ..backends.ffmpeg import UPSCALE_FILTERS, EncoderSettings
from ..backends.melt import MeltSettings
from ..backends.rife import RifeSettings
from ..exceptions import ConfigurationError

AI_UPSCALE_ENGINES = ("realesrgan", "realcugan")
UPSCALE_ENGINES = AI_UPSCALE_ENGINES + tuple(UPSCALE_FILTERS)


@dataclass
class UpscaleSettings:
    """Optional upscaling between interpolation and reassembly.

    ``model`` applies to Real-ESRGAN, ``cugan_model`` and ``noise`` to
    Real-CUGAN. The ffmpeg engines only use ``scale``.
    """
    enabled: bool = False
    engine: str = "realesrgan"
    scale: int = 2
    model: str = "realesrgan-x4plus"
    cugan_model: str = "models-se"
    noise: int = -1
    tile: int = 0
    gpu_id: Optional[int] = None

    def __post_init__(self) -> None:
        if self.engine not in UPSCALE_ENGINES:
            raise ValueError(
                f"Unknown upscale engine '{self.engine}', expected one of {', '.join(UPSCALE_ENGINES)}"
            )
        if not 2 <= self.scale <= 4:
            raise ValueError(f"Upscale factor must be 2, 3 or 4, got {self.scale}")
        if not -1 <= self.noise <= 3:
            raise ValueError(f"Denoise level must be between -1 and 3, got {self.noise}")

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "UpscaleSettings":
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in (data or {}).items() if k in known})

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class RenderSettings:
    melt: MeltSettings = field(default_factory=MeltSettings)
    rife: RifeSettings = field(default_factory=RifeSettings)
    encoder: EncoderSettings = field(default_factory=EncoderSettings)
    upscale: UpscaleSettings = field(default_factory=UpscaleSettings)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RenderSettings":
        try:
            return cls(
                melt=MeltSettings.from_dict(data.get("melt")),
                rife=RifeSettings.from_dict(data.get("rife")),
                encoder=EncoderSettings.from_dict(data.get("encoder")),
                upscale=UpscaleSettings.from_dict(data.get("upscale")),
            )
        except (TypeError, ValueError) as e:
            raise ConfigurationError(f"Invalid render settings: {e}", cause=e)

    @classmethod
    def from_json(cls, blob: Optional[str]) -> "RenderSettings":
        if not blob or not blob.strip():
            return cls()
        try:
            data = json.loads(blob)
        except json.JSONDecodeError as e:
            raise ConfigurationError(f"Render settings are not valid JSON: {e}", cause=e)
        if not isinstance(data, dict):
            raise ConfigurationError("Render settings must be a JSON object")
        return cls.from_dict(data)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "melt": self.melt.to_dict(),
            "rife": self.rife.to_dict(),
            "encoder": self.encoder.to_dict(),
            "upscale": self.upscale.to_dict(),
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict())
