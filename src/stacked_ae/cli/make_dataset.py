import argparse
from pathlib import Path
from typing import List, Optional

from stacked_ae.dataloaders import generate_synthetic_digits, save_digits, split_seed
from stacked_ae.logger import logger


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Generate the synthetic digit corpus (train and test splits)."
    )
    parser.add_argument("--out", type=Path, default=Path("data"),
                        help="Directory receiving digittrain_dataset.npz and digittest_dataset.npz.")
    parser.add_argument("--n-train", type=int, default=5000, help="Number of training examples.")
    parser.add_argument("--n-test", type=int, default=5000, help="Number of test examples.")
    parser.add_argument("--seed", type=int, default=0,
                        help="Base seed; each split derives its own seed from it.")
    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)

    for split, n in (("train", args.n_train), ("test", args.n_test)):
        seed = split_seed(args.seed, split)
        logger.info(f"Generating {n} {split} images (seed={seed})")
        digits = generate_synthetic_digits(n, seed=seed)
        save_digits(split, args.out, digits.images, digits.labels)

    return 0


if __name__ == "__main__":
    raise SystemExit(main())
