from typing import Optional, Tuple

# Index order matches the class axis of the model's score output.
LABELS: Tuple[str, ...] = (
    "children",
    "ok",
    "water",
    "firstaid",
    "sos",
    "shelter",
    "elderly",
    "food",
)


def label_for(class_index: int) -> Optional[str]:
    """Return the label for `class_index`, or None when it is outside the table."""
    if 0 <= class_index < len(LABELS):
        return LABELS[class_index]
    return None
