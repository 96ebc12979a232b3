# vocabmaster/seed.py
from __future__ import annotations

from typing import List, Optional

from .config import DAILY_GOAL
from .schema import SEED_PREFIX, AppState, WordItem

# Course material, in study order. Sets are consecutive slices of this list.
INITIAL_WORDS: List[str] = [
    "Abate", "Aberrant", "Abscond", "Accolade", "Acerbic", "Acumen", "Adulation", "Adumbrate",
    "Aesthetic", "Aggrandize", "Alacrity", "Alchemy", "Amalgamate", "Ameliorate", "Anachronism",
    "Anomaly", "Antipathy", "Apathy", "Appease", "Arduous", "Articulate", "Assuage", "Audacious",
    "Austere", "Avarice", "Banal", "Belie", "Beneficent", "Bolster", "Bombastic",
    "Boorish", "Burgeon", "Burnish", "Buttress", "Cacophony", "Capricious", "Castigate",
    "Catalyst", "Caustic", "Chicanery", "Coagulate", "Cogent", "Commensurate", "Compendium",
    "Complaisant", "Conciliatory", "Condone", "Confound", "Connoisseur", "Contentious",
    "Contrite", "Conundrum", "Converge", "Convoluted", "Craven", "Daunt", "Decorum", "Default",
    "Deference", "Delineate",
    "Denigrate", "Deride", "Derivative", "Desiccate", "Desultory", "Deterrent", "Diatribe",
    "Dichotomy", "Diffidence", "Diffuse", "Digression", "Dirge", "Disabuse", "Discerning",
    "Discordant", "Discredit", "Discrepancy", "Disingenuous", "Disparate", "Dissemble",
    "Dissonance", "Dogmatic", "Dupe", "Eclectic", "Efficacy", "Elegy", "Eloquent", "Emulate",
    "Enervate", "Engender",
    "Enigma", "Ephemeral", "Equanimity", "Equivocate", "Erudite", "Esoteric", "Eulogy",
    "Euphemism", "Exacerbate", "Exculpate", "Exigent", "Exonerate", "Expedient", "Fallacious",
    "Fastidious", "Fervid", "Flout", "Foment", "Forestall", "Frugality", "Garrulous", "Gregarious",
    "Guile", "Gullible", "Harangue", "Homogeneous", "Hyperbole", "Iconoclast", "Idolatry",
    "Immutable",
]


def seed_id(now_ms: int, index: int) -> str:
    return f"{SEED_PREFIX}{now_ms}-{index}"


def seed_words(state: AppState, now_ms: int, words: Optional[List[str]] = None) -> AppState:
    """Append course words the state does not have yet (headwords compared case-insensitively)."""
    existing = {w.word.lower() for w in state.words}
    missing = [w for w in (words if words is not None else INITIAL_WORDS) if w.lower() not in existing]
    if not missing:
        return state
    additions = [WordItem(id=seed_id(now_ms, i), word=w) for i, w in enumerate(missing)]
    return state.model_copy(update={"words": [*state.words, *additions]})


def default_state(now_ms: int) -> AppState:
    return seed_words(AppState(daily_goal=DAILY_GOAL), now_ms)
