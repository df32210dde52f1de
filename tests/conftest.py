import numpy as np
import pandas as pd
import pytest

from mitigation_classifier.config import MitigationConfig

MITIGATION_WORDS = ["solar", "renewable", "emissions", "wind", "energy", "hydropower", "efficiency"]
OTHER_WORDS = ["school", "health", "teachers", "clinic", "vaccines", "girls", "education"]
FILLER = ["the", "project", "support", "for", "and", "of", "programme"]


def make_raw(n: int = 200, positive_share: float = 0.1, seed: int = 0) -> pd.DataFrame:
    """Raw agreement rows with cleaned column names, one row per agreement."""
    rng = np.random.default_rng(seed)
    n_pos = int(round(n * positive_share))
    positive = np.array([True] * n_pos + [False] * (n - n_pos))
    rng.shuffle(positive)

    rows = []
    for i, pos in enumerate(positive):
        words = MITIGATION_WORDS if pos else OTHER_WORDS
        title = " ".join(rng.choice(words, size=3))
        description = " ".join(list(rng.choice(words, size=5)) + list(rng.choice(FILLER, size=4)))
        rows.append(
            {
                "agreement_number": f"AGR-{i:05d}",
                "year": int(rng.integers(2013, 2018)),
                "type_of_flow": "ODA",
                "type_of_agreement": "Standard",
                "pm_climate_change_mitigation": (
                    str(rng.choice(["Main objective", "Significant objective"])) if pos else "None"
                ),
                "pm_climate_change_adaptation": "None",
                "agreement_title": title,
                "description_of_agreement": description,
                "agreement_partner": str(rng.choice(["UNDP", "World Bank", "Norfund", "NGO A"])),
                "group_of_agreement_partner": str(rng.choice(["Multilateral", "NGO", "Public sector"])),
                "extending_agency": str(rng.choice(["Norad", "MFA"])),
                "recipient_country": str(rng.choice(["Kenya", "Nepal", "Malawi", "Colombia"])),
                "main_region": str(rng.choice(["Africa", "Asia", "America"])),
                "main_sector": "Energy" if pos and rng.random() < 0.7 else str(rng.choice(["Education", "Health"])),
                "sub_sector": str(rng.choice(["Policy", "Delivery"])),
                "disbursed_mill_nok": float(rng.gamma(2.0, 3.0 if pos else 1.0)),
            }
        )
    return pd.DataFrame(rows)


@pytest.fixture
def raw_df() -> pd.DataFrame:
    return make_raw()


@pytest.fixture
def small_config() -> MitigationConfig:
    return MitigationConfig(
        n_folds=3,
        max_tokens=50,
        other_threshold=0.05,
        trees=25,
        n_jobs=1,
        model_path="unused.joblib",
    )
