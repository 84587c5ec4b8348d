from .digits import DIGIT_CLASSES, IMAGE_SHAPE, SPLITS, DigitSplit, load_digits, save_digits
from .synthetic import generate_synthetic_digits, split_seed
