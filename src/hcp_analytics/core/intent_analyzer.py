"""
Intent Analyzer - keyword-driven analysis of free-text practitioner questions.

Turns a question such as "top 15 pneumologues in Lyon by city" into a QueryIntent:
recognized entities, inferred filters, sort, limit, grouping and an intent category.

Classification is pattern based, not a parser. Every table below is ordered and
the first match wins, so more specific phrases must come before generic ones.
The strategy sits behind the IntentStrategy protocol so a trained classifier can
replace it without touching plan building or execution.

Example:
    >>> intent = analyze("Who are my 5 best KOLs in Lyon?", records)
    >>> intent.category, intent.limit, intent.entities.cities
    ('rank', 5, ['Lyon'])
"""

import re
import unicodedata
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Protocol

import structlog

from hcp_analytics.core.query_engine_config import MAX_KEYWORDS
from hcp_analytics.core.query_plan import FilterSpec
from hcp_analytics.core.records import PractitionerRecord

logger = structlog.get_logger()

# Valid intent categories (single source of truth)
VALID_CATEGORIES = ["count", "compare", "rank", "aggregate", "info", "search"]

# Checked in this order; first match wins, "search" otherwise
CATEGORY_PATTERNS: list[tuple[str, str]] = [
    ("count", r"\b(how many|(?<!publication )count|number of|combien|nombre|compte)\b"),
    ("compare", r"\b(compare|comparer|comparaison|versus|vs|differences?)\b"),
    (
        "rank",
        r"\b(top|most|best|highest|largest|biggest|meilleure?s?|premiere?s?|classement|maximum)\b"
        r"|\b(le|la|les) plus\b|\bplus (de|gros|grand)\b",
    ),
    (
        "aggregate",
        r"\b(average|mean|total|sum|moyenne|somme|agreg\w*)\b"
        r"|\b(by|per|par) (city|ville|specialty|specialite|vingtile|segment|risk|risque)\b",
    ),
    ("info", r"\b(who is|profile of|details?|information|qui est|c'est qui|profil)\b"),
]

# Supplementary vocabularies, unioned with what the dataset actually contains
STATIC_FIRST_NAMES = [
    "jean", "pierre", "louis", "michel", "paul", "andre", "francois", "philippe",
    "antoine", "marc", "alain", "jacques", "henri", "bernard", "christophe", "eric",
    "gerard", "patrick", "olivier", "daniel", "nicolas", "yves", "laurent", "thierry",
    "stephane", "christian", "bruno", "claude", "frederic", "pascal", "vincent",
    "marie", "sophie", "catherine", "anne", "isabelle", "claire", "nathalie", "sylvie",
    "francoise", "helene", "valerie", "monique", "brigitte", "elise", "charlotte",
    "christine", "julie", "camille", "florence", "jean-pierre", "jean-claude", "anne-marie",
]  # fmt: skip

STATIC_LAST_NAMES = [
    "martin", "bernard", "dubois", "thomas", "robert", "richard", "petit", "durand",
    "leroy", "moreau", "simon", "laurent", "lefebvre", "michel", "garcia", "david",
    "bertrand", "roux", "vincent", "fournier", "morel", "girard", "andre", "lefevre",
    "mercier", "dupont", "lambert", "bonnet", "francois", "martinez", "legrand",
    "garnier", "faure", "rousseau", "blanc", "guerin", "muller", "henry", "roussel",
    "perrin", "morin", "mathieu", "clement", "gauthier", "dumont", "fontaine", "chevalier",
]  # fmt: skip

STATIC_CITIES = [
    "Lyon", "Grenoble", "Villeurbanne", "Bourg-en-Bresse", "Saint-Étienne", "Annecy",
    "Chambéry", "Valence", "Vienne", "Annemasse", "Vénissieux", "Voiron",
    "Bourgoin-Jallieu", "Romans-sur-Isère", "Montélimar",
]  # fmt: skip

# Closed domain vocabulary: (pattern, canonical specialty)
SPECIALTY_PATTERNS: list[tuple[str, str]] = [
    (r"\b(pneumologues?|pneumos?|pulmonologists?|chest physicians?)\b", "Pneumologue"),
    (r"\b(generalistes?|medecins? generalistes?|general practitioners?|gps?)\b", "Médecin généraliste"),
]

PRODUCTS = [
    "vitalaire", "confort+", "confort", "telesuivi", "telemonitoring", "o2", "oxygene", "oxygen",
    "extracteur", "concentrateur", "concentrator", "portable", "service 24/7",
]  # fmt: skip

# Ranking phrases carrying an explicit number, tried in order
LIMIT_PATTERNS = [
    r"\btop\s*(\d+)",
    r"\b(\d+)\s*(?:first|premiere?s?)\b",
    r"\bfirst\s+(\d+)\b",
    r"\b(\d+)\s*(?:best|meilleure?s?)\b",
    r"\bbest\s+(\d+)\b",
]
SINGLE_RESULT_PATTERN = r"\b(the most|the best|le plus|la plus|which practitioner|quel medecin|quel praticien)\b"

KOL_PATTERN = r"\bkols?\b|\bopinion leaders?\b|\bleaders? d'opinion\b"
PUBLICATION_PATTERN = r"\b(publications?|published|publie\w*|articles?|papers?)\b"
NOTES_PATTERN = r"\b(notes?|commentaires?|observations?)\b"
RISK_PATTERN = r"\b(risk|risky|risque|churn\w*|perdre|losing)\b|\bat.risk\b"
RISK_INTENSIFIER_PATTERN = r"\b(very|severe|severely|any|tres|moderate|moderately)\b"

# Sort table: (pattern, field, order); first match wins
SORT_PATTERNS: list[tuple[str, str, str]] = [
    (r"\b(most|more|plus de|le plus de) publications?\b|\bpublication count\b", "publication_count", "desc"),
    (
        r"\b(most|highest|biggest|largest) (volume|prescribers?)\b|\btop prescribers?\b"
        r"|\bplus (de|gros) volume\b|\bplus gros prescripteurs?\b|\bby volume\b",
        "volume",
        "desc",
    ),
    (
        r"\b(most|more) loyal\b|\b(highest|best) loyalty\b|\bplus fideles?\b|\bmeilleure? (score|fidelite)\b",
        "loyalty_score",
        "desc",
    ),
    # Vingtile 1 is the best tier: "best vingtile" sorts ascending, unlike every other ranking
    (r"\b(best|top|lowest) vingtiles?\b|\bmeilleurs? vingtiles?\b|\bvingtile le plus bas\b", "vingtile", "asc"),
    (
        r"\blongest (unvisited|without (a )?visit)\b|\bnot (seen|visited)\b|\bleast recently\b"
        r"|\bpas vus?\b|\bnon visites?\b|\bn'ai pas visite\b|\boldest visits?\b",
        "days_since_contact",
        "desc",
    ),
    (r"\bmost recently (seen|visited)\b|\brecently visited\b|\bvus? recemment\b", "days_since_contact", "asc"),
]

# Measure a question is about, matched after group-by phrases are removed; first match wins
MEASURE_PATTERNS: list[tuple[str, str]] = [
    (r"\b(volumes?|prescri\w*|litres?|liters?)\b", "volume"),
    (r"\b(loyal\w*|fidel\w*)\b", "loyalty_score"),
    (r"\bvingtiles?\b", "vingtile"),
    (r"\b(publications?|published|publie\w*)\b", "publication_count"),
    (r"\bdays since\b|\b(last|latest) visits?\b|\bderniere visite\b|\bjours depuis\b", "days_since_contact"),
]

# Sort used by ranking questions and ranking limits without an explicit sort phrase
DEFAULT_RANK_SORT = ("volume", "desc")
# Ranking order per measure when no sort phrase names one; vingtile 1 is the best tier
MEASURE_RANK_ORDER = {"vingtile": "asc"}

GROUP_BY_PATTERNS: list[tuple[str, str]] = [
    (r"\b(by|per|par) (city|cities|villes?)\b", "city"),
    (r"\b(by|per|par) (specialty|specialties|specialites?)\b", "specialty"),
    (r"\b(by|per|par) (vingtiles?|segments?)\b", "vingtile_bucket"),
    (r"\b(by|per|par) (loyalty level|loyalty bucket|niveau de fidelite)\b", "loyalty_bucket"),
    (r"\b(by|per|par) (risk|risque)", "risk_tier"),
    (r"\b(by|per|par) (last visit|visit recency|anciennete)\b", "visit_bucket"),
    (r"\bkols? (vs|versus|and|et) (others|autres|non.kols?)\b|\b(by|par) (kol|statut kol)\b", "is_kol"),
]

AGGREGATION_PATTERNS: list[tuple[str, str]] = [
    (r"\b(how many|(?<!publication )count|number of|combien|nombre)\b", "count"),
    (r"\b(average|mean|moyenne|moyen)\b", "avg"),
    (r"\b(total|sum|somme)\b", "sum"),
    (r"\bminimum\b", "min"),
    (r"\bmaximum\b", "max"),
]

PIE_CHART_PATTERN = r"\b(share|proportion|breakdown|distribution|repartition)\b"

STOP_WORDS = {
    # fr
    "le", "la", "les", "un", "une", "des", "de", "du", "et", "ou", "qui", "que", "quoi", "dont",
    "est", "sont", "dans", "pour", "avec", "sur", "par", "plus", "moins", "quel", "quelle",
    "quels", "quelles", "mes", "ont",
    # en
    "the", "and", "for", "with", "who", "what", "which", "are", "how", "many", "most", "have",
    "has", "from", "that", "this", "show", "give", "list", "all", "my", "me", "per",
}  # fmt: skip


def normalize_text(text: str) -> str:
    """Diacritic-stripped, lower-cased form used for every match."""
    decomposed = unicodedata.normalize("NFD", text)
    return "".join(ch for ch in decomposed if not unicodedata.combining(ch)).lower()


def _word_pattern(term: str) -> str:
    # Hyphens are part of a name ("jean" must not match inside "jean-pierre")
    return rf"(?<![\w-]){re.escape(term)}(?![\w-])"


@dataclass
class IntentEntities:
    """Entities recognized in a question (original casing where the dataset provides it)."""

    names: list[str] = field(default_factory=list)
    cities: list[str] = field(default_factory=list)
    specialties: list[str] = field(default_factory=list)
    products: list[str] = field(default_factory=list)
    numbers: list[int] = field(default_factory=list)

    def is_empty(self) -> bool:
        return not (self.names or self.cities or self.specialties or self.products or self.numbers)


@dataclass
class SortSpec:
    field: str
    order: str = "desc"


@dataclass
class QueryIntent:
    """
    Parsed intent from a free-text question.

    Attributes:
        category: One of VALID_CATEGORIES
        entities: Recognized names, cities, specialties, products, numbers
        filters: Filters inferred from keywords (KOL, publications, risk, notes)
        sort: Inferred sort field and direction
        measure: Record field the question is about (volume, loyalty, ...)
        limit: Inferred result limit
        group_by: Inferred grouping dimension
        aggregation: Inferred aggregation (count/sum/avg/min/max)
        chart_type: Chart hint ("pie" for share/breakdown questions)
        keywords: Normalized tokens for free-text search by callers
        question: Original question text
    """

    category: str = "search"
    entities: IntentEntities = field(default_factory=IntentEntities)
    filters: list[FilterSpec] = field(default_factory=list)
    sort: SortSpec | None = None
    measure: str | None = None
    limit: int | None = None
    group_by: str | None = None
    aggregation: str | None = None
    chart_type: str | None = None
    keywords: list[str] = field(default_factory=list)
    question: str = ""

    def __post_init__(self):
        """Validate category."""
        if self.category not in VALID_CATEGORIES:
            raise ValueError(f"Invalid category: {self.category}. Must be one of {VALID_CATEGORIES}")


class IntentStrategy(Protocol):
    """Turns a question into a QueryIntent. Implementations must never raise."""

    def analyze(self, question: str, reference: Sequence[PractitionerRecord]) -> QueryIntent: ...


class KeywordIntentStrategy:
    """
    Ordered keyword tables over diacritic-stripped, lower-cased text.

    Name and city vocabularies are derived from the reference dataset on each call
    and unioned with the static lists, so the analyzer follows the data it is pointed at.
    """

    def analyze(self, question: str, reference: Sequence[PractitionerRecord]) -> QueryIntent:
        question = question or ""
        text = normalize_text(question)

        group_by = self._match_first(text, GROUP_BY_PATTERNS)
        limit = self._extract_limit(text)

        intent = QueryIntent(
            category=self._classify(text),
            entities=self._extract_entities(text, reference),
            filters=self._infer_filters(text, group_by),
            sort=self._infer_sort(text),
            measure=self._infer_measure(text),
            limit=limit,
            group_by=group_by,
            aggregation=self._match_first(text, AGGREGATION_PATTERNS),
            chart_type="pie" if re.search(PIE_CHART_PATTERN, text) else None,
            keywords=self._extract_keywords(text),
            question=question,
        )

        # A ranking limit ("top 15", "the best") without a sort phrase ranks by the measure, volume by default
        if intent.sort is None and (intent.category == "rank" or intent.limit is not None):
            if intent.measure:
                intent.sort = SortSpec(intent.measure, MEASURE_RANK_ORDER.get(intent.measure, "desc"))
            else:
                intent.sort = SortSpec(*DEFAULT_RANK_SORT)

        logger.info(
            "intent_analyzed",
            category=intent.category,
            names=intent.entities.names,
            cities=intent.entities.cities,
            specialties=intent.entities.specialties,
            filter_count=len(intent.filters),
            sort_field=intent.sort.field if intent.sort else None,
            measure=intent.measure,
            limit=intent.limit,
            group_by=intent.group_by,
        )
        return intent

    @staticmethod
    def _match_first(text: str, table: list[tuple[str, str]]) -> str | None:
        for pattern, value in table:
            if re.search(pattern, text):
                return value
        return None

    def _classify(self, text: str) -> str:
        for category, pattern in CATEGORY_PATTERNS:
            if re.search(pattern, text):
                return category
        return "search"

    def _extract_entities(self, text: str, reference: Sequence[PractitionerRecord]) -> IntentEntities:
        entities = IntentEntities()

        first_vocab = self._vocabulary([r.first_name for r in reference], STATIC_FIRST_NAMES)
        last_vocab = self._vocabulary([r.last_name for r in reference], STATIC_LAST_NAMES)
        city_vocab = self._vocabulary([r.city for r in reference], STATIC_CITIES)

        first_names = self._find_terms(text, first_vocab)
        claimed = {normalize_text(name) for name in first_names}
        # A last name already claimed as a first name is not counted twice
        last_names = [name for name in self._find_terms(text, last_vocab) if normalize_text(name) not in claimed]

        positioned = sorted(
            [(self._position(text, n), n) for n in first_names] + [(self._position(text, n), n) for n in last_names]
        )
        entities.names = [name for _, name in positioned]
        entities.cities = self._find_terms(text, city_vocab)

        for pattern, specialty in SPECIALTY_PATTERNS:
            if re.search(pattern, text) and specialty not in entities.specialties:
                entities.specialties.append(specialty)

        for product in PRODUCTS:
            if re.search(_word_pattern(product), text):
                entities.products.append(product)

        entities.numbers = [int(n) for n in re.findall(r"\d+", text)]
        return entities

    @staticmethod
    def _vocabulary(dataset_terms: list[str], static_terms: list[str]) -> dict[str, str]:
        """normalized -> display form; dataset spelling wins over the static list."""
        vocab: dict[str, str] = {}
        for term in dataset_terms:
            key = normalize_text(term).strip()
            if len(key) > 2 and key not in vocab:
                vocab[key] = term
        for term in static_terms:
            key = normalize_text(term).strip()
            if len(key) > 2 and key not in vocab:
                vocab[key] = term
        return vocab

    @staticmethod
    def _position(text: str, term: str) -> int:
        match = re.search(_word_pattern(normalize_text(term)), text)
        return match.start() if match else len(text)

    def _find_terms(self, text: str, vocab: dict[str, str]) -> list[str]:
        found = []
        for key, display in vocab.items():
            match = re.search(_word_pattern(key), text)
            if match:
                found.append((match.start(), display))
        found.sort(key=lambda item: item[0])
        return [display for _, display in found]

    def _extract_limit(self, text: str) -> int | None:
        for pattern in LIMIT_PATTERNS:
            match = re.search(pattern, text)
            if match:
                value = int(match.group(1))
                if value > 0:
                    return value
        if re.search(SINGLE_RESULT_PATTERN, text):
            return 1
        return None

    def _infer_filters(self, text: str, group_by: str | None) -> list[FilterSpec]:
        filters: list[FilterSpec] = []

        # A KOL split or risk breakdown needs both sides, so it does not filter
        if group_by != "is_kol" and re.search(KOL_PATTERN, text):
            filters.append(FilterSpec(column="is_kol", operator="==", value=True))

        if re.search(PUBLICATION_PATTERN, text):
            filters.append(FilterSpec(column="has_publications", operator="==", value=True))

        if re.search(NOTES_PATTERN, text):
            filters.append(FilterSpec(column="note_count", operator=">", value=0))

        if group_by != "risk_tier" and re.search(RISK_PATTERN, text):
            tiers = ["high", "medium"] if re.search(RISK_INTENSIFIER_PATTERN, text) else ["high"]
            filters.append(FilterSpec(column="risk_tier", operator="IN", value=tiers))

        return filters

    def _infer_sort(self, text: str) -> SortSpec | None:
        for pattern, sort_field, order in SORT_PATTERNS:
            if re.search(pattern, text):
                return SortSpec(field=sort_field, order=order)
        return None

    def _infer_measure(self, text: str) -> str | None:
        # "volume by loyalty level" measures volume, not loyalty
        for pattern, _ in GROUP_BY_PATTERNS:
            text = re.sub(pattern, " ", text)
        return self._match_first(text, MEASURE_PATTERNS)

    def _extract_keywords(self, text: str) -> list[str]:
        keywords: list[str] = []
        for raw in text.split():
            word = raw.strip("?!.,;:'\"()[]")
            if len(word) > 2 and word not in STOP_WORDS and word not in keywords:
                keywords.append(word)
        return keywords[:MAX_KEYWORDS]


_default_strategy = KeywordIntentStrategy()


def analyze(
    question: str,
    reference: Sequence[PractitionerRecord],
    strategy: IntentStrategy | None = None,
) -> QueryIntent:
    """
    Analyze a free-text question against the reference dataset.

    Never raises: unresolvable text yields category "search" with empty entities.

    Args:
        question: User's question
        reference: Dataset used to derive name and city vocabularies
        strategy: Optional classifier, defaults to KeywordIntentStrategy

    Returns:
        QueryIntent
    """
    return (strategy or _default_strategy).analyze(question, reference)
