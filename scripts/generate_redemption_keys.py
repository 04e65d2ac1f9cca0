from __future__ import annotations

import argparse
from pathlib import Path

from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ec


def generate_key_pair() -> tuple[str, str]:
    private_key = ec.generate_private_key(ec.SECP256R1())
    private_pem = private_key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    ).decode("ascii")
    public_pem = (
        private_key.public_key()
        .public_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PublicFormat.SubjectPublicKeyInfo,
        )
        .decode("ascii")
    )
    return private_pem, public_pem


def as_env_value(pem: str) -> str:
    return pem.strip().replace("\n", "\\n")


def _parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Generate an ES256 key pair for redemption tokens")
    parser.add_argument("--output-dir", type=Path, help="Write private.pem and public.pem here")
    parser.add_argument("--env", action="store_true", help="Print escaped .env lines")
    return parser.parse_args()


def main() -> int:
    args = _parse_args()
    private_pem, public_pem = generate_key_pair()

    if args.output_dir is not None:
        args.output_dir.mkdir(parents=True, exist_ok=True)
        private_path = args.output_dir / "redemption_private.pem"
        private_path.write_text(private_pem, encoding="ascii")
        private_path.chmod(0o600)
        (args.output_dir / "redemption_public.pem").write_text(public_pem, encoding="ascii")
        print(f"written={args.output_dir}")  # noqa: T201

    if args.env or args.output_dir is None:
        print(f'REDEMPTION_JWT_PRIVATE_KEY="{as_env_value(private_pem)}"')  # noqa: T201
        print(f'REDEMPTION_JWT_PUBLIC_KEY="{as_env_value(public_pem)}"')  # noqa: T201
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
