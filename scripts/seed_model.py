import argparse
import pickle
import zipfile
from dataclasses import dataclass
from pathlib import Path
from typing import Final

import torch
import torch.nn as nn
from torch import Tensor
from torchvision.models import resnet18

from digit_identifier.inference.engine import save_artifact
from digit_identifier.inference.manifest import ModelManifest
from digit_identifier.logging import get_logger

_LOAD_ERRORS: Final[tuple[type[BaseException], ...]] = (
    OSError,
    ValueError,
    RuntimeError,
    EOFError,
    pickle.UnpicklingError,
    zipfile.BadZipFile,
)


@dataclass(frozen=True)
class SeedArgs:
    model_id: str
    out_dir: Path
    name: str
    ext: str
    state_dict: Path | None
    n_classes: int = 10
    size: int = 28


class DigitNet(nn.Module):
    """ResNet-18 with a 1-channel CIFAR-style stem behind the artifact I/O contract.

    Accepts ``[1, width, height, 1]`` and returns softmax scores ``[1, n_classes]``.
    """

    def __init__(self, n_classes: int) -> None:
        super().__init__()
        inner = resnet18(weights=None, num_classes=n_classes)
        inner.conv1 = nn.Conv2d(1, 64, kernel_size=3, stride=1, padding=1, bias=False)
        inner.maxpool = nn.Identity()
        self.inner = inner

    def forward(self, x: Tensor) -> Tensor:
        # [N, W, H, C] -> [N, C, H, W]
        logits = self.inner(x.permute(0, 3, 2, 1))
        return torch.softmax(logits, dim=1)


def parse_args(argv: list[str] | None = None) -> SeedArgs:
    ap = argparse.ArgumentParser(description="Package a digit network as a model artifact")
    ap.add_argument("--model-id", required=True, help="Identifier stored in the manifest")
    ap.add_argument("--out-dir", default="./models", help="Directory receiving the artifact")
    ap.add_argument("--name", default="mnist", help="Artifact file name without extension")
    ap.add_argument("--ext", default="pt", help="Artifact file extension")
    ap.add_argument("--state-dict", default=None, help="Trained ResNet-18 weights (optional)")
    a = ap.parse_args(argv)
    return SeedArgs(
        model_id=str(a.model_id),
        out_dir=Path(str(a.out_dir)),
        name=str(a.name),
        ext=str(a.ext).lstrip("."),
        state_dict=Path(str(a.state_dict)) if a.state_dict else None,
    )


def build_model(args: SeedArgs) -> DigitNet:
    net = DigitNet(args.n_classes)
    if args.state_dict is not None:
        try:
            sd = load_state_dict_file(args.state_dict)
        except _LOAD_ERRORS as exc:
            raise SystemExit(f"Failed to read state dict: {args.state_dict.as_posix()}") from exc
        try:
            validate_state_dict(sd, args.n_classes)
        except ValueError as exc:
            raise SystemExit(f"Invalid state dict: {exc}") from exc
        net.inner.load_state_dict(sd)
    net.eval()
    return net


def seed(args: SeedArgs) -> Path:
    net = build_model(args)
    manifest = ModelManifest.for_digits(
        args.model_id, width=args.size, height=args.size, n_classes=args.n_classes
    )
    path = args.out_dir / f"{args.name}.{args.ext}"
    save_artifact(net, manifest, path)
    get_logger().info(
        "seed_model_written model_id=%s trained=%s path=%s",
        args.model_id,
        "true" if args.state_dict is not None else "false",
        path.as_posix(),
    )
    return path


def load_state_dict_file(path: Path) -> dict[str, Tensor]:
    obj = torch.load(path.as_posix(), map_location=torch.device("cpu"), weights_only=True)
    sd_obj = obj["state_dict"] if isinstance(obj, dict) and "state_dict" in obj else obj
    if not isinstance(sd_obj, dict):
        raise ValueError("state dict file did not contain a dict")
    out: dict[str, Tensor] = {}
    for k, v in sd_obj.items():
        if isinstance(k, str) and torch.is_tensor(v):
            out[k] = v
        else:
            raise ValueError("invalid state dict entry")
    return out


def validate_state_dict(sd: dict[str, Tensor], n_classes: int) -> None:
    w = sd.get("fc.weight")
    b = sd.get("fc.bias")
    if w is None or b is None:
        raise ValueError("missing classifier weights in state dict")
    if w.ndim != 2 or b.ndim != 1:
        raise ValueError("invalid classifier tensor dimensions")
    if int(w.shape[0]) != n_classes or int(b.shape[0]) != n_classes:
        raise ValueError("classifier head size does not match n_classes")
    if int(w.shape[1]) != 512:
        raise ValueError("classifier head in_features does not match backbone")
    conv1 = sd.get("conv1.weight")
    if conv1 is None or conv1.ndim != 4:
        raise ValueError("missing or invalid conv1.weight")
    if int(conv1.shape[0]) != 64 or int(conv1.shape[1]) != 1:
        raise ValueError("unexpected conv1 shape for 1-channel stem")


def main(argv: list[str] | None = None) -> None:  # pragma: no cover - tiny glue
    from digit_identifier.logging import init_logging

    init_logging()
    seed(parse_args(argv))


if __name__ == "__main__":
    main()
