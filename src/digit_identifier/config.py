from __future__ import annotations

import os
import tomllib
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Final

_DEFAULT_CONFIG_PATH: Final[Path] = Path("config/digits.toml")
_MAX_THREADS: Final[int] = 64


@dataclass(frozen=True)
class AppConfig:
    # Background worker count for load/classify calls; 0 picks min(8, cpu_count)
    threads: int = 0


@dataclass(frozen=True)
class ModelConfig:
    model_dir: Path = Path("models")
    model_name: str = "mnist"
    model_ext: str = "pt"
    # Intra-op threads for the computation graph
    threads: int = 2
    # Flip grayscale polarity before inference for models trained on light-on-dark digits
    invert: bool = False

    @property
    def artifact_name(self) -> str:
        return f"{self.model_name}.{self.model_ext}"


@dataclass(frozen=True)
class Settings:
    app: AppConfig
    model: ModelConfig

    @staticmethod
    def default() -> Settings:
        return Settings(app=AppConfig(), model=ModelConfig())

    def model_path(self) -> Path:
        return self.model.model_dir / self.model.artifact_name

    @staticmethod
    def _toml_path() -> Path:
        env_val = os.getenv("DIGIT_IDENTIFIER_CONFIG")
        if env_val:
            return Path(env_val)
        return _DEFAULT_CONFIG_PATH

    @classmethod
    def load(cls) -> Settings:
        # Load env first, then override from TOML if present.
        base = cls(app=_load_app_from_env(), model=_load_model_from_env())
        cfg_path = cls._toml_path()
        if not cfg_path.exists():
            return base
        try:
            raw: object = tomllib.loads(cfg_path.read_text(encoding="utf-8"))
        except OSError as exc:
            raise RuntimeError(f"Failed to read config TOML: {cfg_path}") from exc
        except tomllib.TOMLDecodeError as exc:
            raise RuntimeError(f"Invalid TOML config: {cfg_path}") from exc
        return cls(
            app=_merge_app(base.app, _toml_table(raw, "app")),
            model=_merge_model(base.model, _toml_table(raw, "model")),
        )


def _check_threads(name: str, value: int, allow_zero: bool) -> int:
    low = 0 if allow_zero else 1
    if not (low <= value <= _MAX_THREADS):
        raise RuntimeError(f"{name} out of range")
    return value


def _load_app_from_env() -> AppConfig:
    a = AppConfig()
    th = os.getenv("APP__THREADS")
    if th is not None and th.isdigit():
        a = replace(a, threads=_check_threads("APP__THREADS", int(th), allow_zero=True))
    return a


def _load_model_from_env() -> ModelConfig:
    m = ModelConfig()
    md = os.getenv("MODEL__DIR")
    mn = os.getenv("MODEL__NAME")
    me = os.getenv("MODEL__EXT")
    th = os.getenv("MODEL__THREADS")
    inv = os.getenv("MODEL__INVERT")
    if md:
        m = replace(m, model_dir=Path(md))
    if mn:
        m = replace(m, model_name=mn)
    if me:
        m = replace(m, model_ext=me.lstrip("."))
    if th is not None and th.isdigit():
        m = replace(m, threads=_check_threads("MODEL__THREADS", int(th), allow_zero=False))
    if inv is not None:
        m = replace(m, invert=inv.strip().lower() in {"1", "true", "yes", "on"})
    return m


def _merge_app(base: AppConfig, data: dict[str, object]) -> AppConfig:
    out = base
    if "threads" in data:
        threads = _toml_int("threads", data["threads"])
        out = replace(out, threads=_check_threads("threads", threads, True))
    return out


def _merge_model(base: ModelConfig, data: dict[str, object]) -> ModelConfig:
    out = base
    if "dir" in data:
        out = replace(out, model_dir=Path(str(data["dir"])))
    if "name" in data:
        out = replace(out, model_name=str(data["name"]))
    if "ext" in data:
        out = replace(out, model_ext=str(data["ext"]).lstrip("."))
    if "threads" in data:
        threads = _toml_int("threads", data["threads"])
        out = replace(out, threads=_check_threads("threads", threads, False))
    if "invert" in data:
        inv = data["invert"]
        if not isinstance(inv, bool):
            raise RuntimeError(f"invert must be a boolean, got {inv!r}")
        out = replace(out, invert=inv)
    return out


def _toml_int(key: str, value: object) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise RuntimeError(f"{key} must be an integer, got {value!r}")
    return value


def _toml_table(raw: object, key: str) -> dict[str, object]:
    if isinstance(raw, dict):
        tab: object = raw.get(key, {})
        if isinstance(tab, dict):
            return {str(k): v for k, v in tab.items()}
    return {}
