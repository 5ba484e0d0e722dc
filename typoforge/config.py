from __future__ import annotations

import os
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Dict, Optional

from dotenv import load_dotenv

# populate os.environ from a .env in CWD/parents
load_dotenv()

TYPEFACE = "typeface"
ILLUSTRATION = "illustration"
VARIANTS = (TYPEFACE, ILLUSTRATION)

DEFAULT_ANALYSIS_MODEL = "gemini-2.5-flash"
DEFAULT_IMAGE_MODEL = "gemini-3-pro-image-preview"


def get_api_key() -> Optional[str]:
    key = os.getenv("GEMINI_API_KEY")
    if key:
        return key
    # Optional: read from ~/.config/gemini/api_key
    cfg_path = Path.home() / ".config" / "gemini" / "api_key"
    try:
        if cfg_path.exists():
            return cfg_path.read_text().strip() or None
    except OSError:
        return None
    return None


def _env_flag(name: str) -> bool:
    return os.getenv(name, "").strip().lower() in {"1", "true", "yes", "on"}


@dataclass(frozen=True)
class Settings:
    """Process-level settings read from the environment."""

    api_key: Optional[str] = None
    analysis_model: str = DEFAULT_ANALYSIS_MODEL
    image_model: str = DEFAULT_IMAGE_MODEL
    timeout: float = 180.0
    output_dir: str = "output"
    offline: bool = False

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            api_key=get_api_key(),
            analysis_model=os.getenv("TYPOFORGE_ANALYSIS_MODEL", DEFAULT_ANALYSIS_MODEL),
            image_model=os.getenv("TYPOFORGE_IMAGE_MODEL", DEFAULT_IMAGE_MODEL),
            timeout=float(os.getenv("TYPOFORGE_TIMEOUT", "180")),
            output_dir=os.getenv("TYPOFORGE_OUTPUT_DIR", "output"),
            offline=_env_flag("TYPOFORGE_OFFLINE"),
        )


@dataclass(frozen=True)
class ImageOptions:
    aspect_ratio: str = "1:1"
    image_size: str = "2K"


@dataclass(frozen=True)
class BlendWeights:
    visual: float
    accuracy: float
    dna: float


@dataclass(frozen=True)
class ForgeConfig:
    """Everything that differs between the typeface and illustration loops."""

    variant: str = TYPEFACE
    analysis_model: str = DEFAULT_ANALYSIS_MODEL
    image_model: str = DEFAULT_IMAGE_MODEL
    max_iterations: int = 5
    threshold: float = 90.0
    blend: BlendWeights = field(default_factory=lambda: BlendWeights(visual=0.4, accuracy=0.3, dna=0.3))
    fallback_blend: BlendWeights = field(default_factory=lambda: BlendWeights(visual=0.2, accuracy=0.4, dna=0.1))
    fallback_ceiling: float = 35.0
    low_accuracy_floor: float = 50.0
    low_accuracy_ceiling: float = 40.0
    image: ImageOptions = field(default_factory=ImageOptions)
    color_variations: int = 0
    timeout: float = 180.0

    @classmethod
    def for_variant(cls, variant: str, settings: Optional[Settings] = None, **overrides: Any) -> "ForgeConfig":
        if variant not in VARIANTS:
            raise ValueError(f"Unknown variant={variant}")
        base: Dict[str, Any] = {"variant": variant}
        if variant == ILLUSTRATION:
            base.update(max_iterations=3, threshold=85.0, color_variations=3)
        if settings is not None:
            base.update(
                analysis_model=settings.analysis_model,
                image_model=settings.image_model,
                timeout=settings.timeout,
            )
        base.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**base)

    def with_overrides(self, **overrides: Any) -> "ForgeConfig":
        return replace(self, **{k: v for k, v in overrides.items() if v is not None})
