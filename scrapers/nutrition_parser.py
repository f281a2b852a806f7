"""
Nutrition fact parser module.

Loads a recipe detail page (trying several URL shapes) and extracts the
nutrition label, serving size and dietary/allergen markers.
"""

import logging
import re
from typing import Dict, Iterable, List, Optional, Sequence, Set, Tuple

from bs4 import BeautifulSoup, Tag

from config.config import RECIPE_URL_TEMPLATES
from config.models import UNKNOWN_ITEM, DietaryTag, NutritionInfo, order_tags
from scrapers.browser_manager import BrowserPage, with_error_handling


NUTRITION_MARKER = ".nutrition-facts, .nutritionLabel, #nutrition, .recipe-nutrition"
NAME_SELECTOR = "h1, h2, .recipe-name, .item-name"

SERVING_SIZE_LABEL = "Serving Size"
SERVING_SIZE_PREFIX = re.compile(r"Serving Size:?", re.IGNORECASE)
OUNCES_PATTERN = re.compile(r"(\d+\.?\d*)\s*oz", re.IGNORECASE)
DEFAULT_SERVING_SIZE = "1 serving"
DEFAULT_SERVING_OZ = 4.0

# field -> (class names, visible labels); classes are tried first
NUTRIENT_CANDIDATES: Dict[str, Tuple[Tuple[str, ...], Tuple[str, ...]]] = {
    'calories': (('calories',), ('Calories',)),
    'total_fat': (('total-fat', 'totalFat'), ('Total Fat', 'Fat')),
    'saturated_fat': (('saturated-fat', 'saturatedFat'), ('Saturated Fat',)),
    'trans_fat': (('trans-fat', 'transFat'), ('Trans Fat',)),
    'cholesterol': (('cholesterol',), ('Cholesterol',)),
    'sodium': (('sodium',), ('Sodium',)),
    'total_carbs': (('total-carbs', 'totalCarbs'), ('Total Carbohydrate', 'Carbohydrate')),
    'dietary_fiber': (('dietary-fiber', 'dietaryFiber'), ('Dietary Fiber', 'Fiber')),
    'sugars': (('sugars',), ('Total Sugars', 'Sugars', 'Sugar')),
    'added_sugars': (('added-sugars', 'addedSugars'), ('Added Sugars',)),
    'protein': (('protein',), ('Protein',)),
    'vitamin_d': (('vitamin-d', 'vitaminD'), ('Vitamin D',)),
    'calcium': (('calcium',), ('Calcium',)),
    'iron': (('iron',), ('Iron',)),
    'potassium': (('potassium',), ('Potassium',)),
}

# Reported as absent (None) rather than 0 when the page does not show them
OPTIONAL_NUTRIENTS = ('vitamin_d', 'calcium', 'iron', 'potassium')

# Matched against lowercased text with '-' and '_' turned into spaces
TAG_SYNONYMS: Tuple[Tuple[str, DietaryTag], ...] = (
    ('vegan', DietaryTag.VEGAN),
    ('vegetarian', DietaryTag.VEGETARIAN),
    ('low carbon', DietaryTag.LOW_CARBON),
    ('high carbon', DietaryTag.HIGH_CARBON),
    ('halal', DietaryTag.HALAL),
    ('gluten', DietaryTag.CONTAINS_GLUTEN),
    ('wheat', DietaryTag.CONTAINS_WHEAT),
    ('dairy', DietaryTag.CONTAINS_DAIRY),
    ('milk', DietaryTag.CONTAINS_DAIRY),
    ('eggs', DietaryTag.CONTAINS_EGGS),
    ('egg', DietaryTag.CONTAINS_EGGS),
    ('soy', DietaryTag.CONTAINS_SOY),
    ('tree nuts', DietaryTag.CONTAINS_NUTS),
    ('nuts', DietaryTag.CONTAINS_NUTS),
    ('peanuts', DietaryTag.CONTAINS_NUTS),
    ('peanut', DietaryTag.CONTAINS_NUTS),
    ('shellfish', DietaryTag.CONTAINS_SHELLFISH),
    ('fish', DietaryTag.CONTAINS_FISH),
    ('sesame', DietaryTag.CONTAINS_SESAME),
    ('alcohol', DietaryTag.CONTAINS_ALCOHOL),
)

# Diet words trusted outside icons, only inside diet-classed blocks
DIET_WORD_TAGS = (DietaryTag.VEGAN, DietaryTag.VEGETARIAN, DietaryTag.HALAL)

ICON_SELECTOR = "img[alt], img[title], .dietary-icon, .allergen-icon"
ALLERGEN_SELECTOR = ".allergens, .contains, [class*=allergen]"
DIET_AREA_SELECTOR = "[class*=diet]"

NON_CONTENT_TAGS = ('script', 'style', 'noscript', 'head', 'title')


def _synonym_pattern(word: str) -> re.Pattern:
    # Letter boundaries on both sides; "non vegan" and "gluten free" do not count
    return re.compile(rf"(?<![a-z])(?<!non ){re.escape(word)}(?![a-z])(?! free)")


TAG_PATTERNS = tuple((_synonym_pattern(word), tag) for word, tag in TAG_SYNONYMS)


def normalize_tag_text(text: str) -> str:
    return re.sub(r"[-_]+", " ", text.lower())


class NutritionFactParser:
    """
    Parser for recipe detail pages.

    Extracts:
    - Item name
    - Serving size (display text and ounces)
    - Nutrition label values
    - Dietary and allergen tags
    """

    NUMERIC_PATTERN = re.compile(r'([0-9]+\.?[0-9]*)')

    def __init__(
        self,
        timeout: float = 15,
        url_templates: Sequence[str] = RECIPE_URL_TEMPLATES
    ):
        """
        Initialize nutrition parser.

        Args:
            timeout: Navigation timeout for each recipe URL (seconds)
            url_templates: Recipe URL shapes, tried in order
        """
        self.timeout = timeout
        self.url_templates = tuple(url_templates)
        self.logger = logging.getLogger(self.__class__.__name__)

    @classmethod
    def parse_numeric_value(cls, text: str) -> Optional[float]:
        """
        Extract the first numeric value from text.

        Args:
            text: Text containing a number (e.g., "100g", "12.5", "1,250 mg")

        Returns:
            Float value or None if parsing fails
        """
        if not text:
            return None

        cleaned = text.replace(',', '').replace('<', '').replace('>', '').strip()
        match = cls.NUMERIC_PATTERN.search(cleaned)
        if match:
            try:
                return float(match.group(1))
            except ValueError:
                return None
        return None

    # ------------------------------------------------------------------
    # Page loading
    # ------------------------------------------------------------------

    async def load(self, page: BrowserPage, recipe_id: str) -> Optional[BeautifulSoup]:
        """
        Navigate through the recipe URL shapes until one shows a nutrition label.

        Args:
            page: Page dedicated to nutrition lookups
            recipe_id: Numeric recipe identifier

        Returns:
            Parsed document, or None when no URL shape worked
        """
        for template in self.url_templates:
            url = template.format(recipe_id=recipe_id)
            try:
                html = await page.goto(url, timeout=self.timeout)
            except Exception as e:
                self.logger.debug(f"    ⚠️  Failed to load {url}, trying next... ({e})")
                continue

            document = BeautifulSoup(html, 'html.parser')
            if document.select_one(NUTRITION_MARKER):
                self.logger.debug(f"    ✅ Nutrition label found at {url}")
                return document
            self.logger.debug(f"    ℹ️  No nutrition label at {url}")

        return None

    async def parse(self, page: BrowserPage, recipe_id: str) -> Optional[NutritionInfo]:
        """
        Load and parse one recipe's nutrition facts.

        Args:
            page: Page dedicated to nutrition lookups
            recipe_id: Numeric recipe identifier

        Returns:
            NutritionInfo, or None when the recipe could not be loaded or parsed
        """
        self.logger.info(f"🥗 Parsing nutrition for recipe {recipe_id}")
        try:
            document = await self.load(page, recipe_id)
            if document is None:
                self.logger.warning(f"❌ Could not load nutrition data for recipe {recipe_id}")
                return None

            nutrition = self.extract(document)
        except Exception as e:
            self.logger.error(f"❌ Failed to parse nutrition for recipe {recipe_id}: {e}")
            return None

        self.logger.info(f"✅ Parsed nutrition for {nutrition.name}")
        return nutrition

    # ------------------------------------------------------------------
    # Extraction (pure, works on a parsed document)
    # ------------------------------------------------------------------

    def extract(self, document: BeautifulSoup) -> NutritionInfo:
        """
        Build NutritionInfo from a loaded recipe page.

        Missing values fall back to defaults; this never raises for
        unexpected markup.
        """
        serving_size, serving_size_oz = self.extract_serving_size(document)
        nutrients = self.extract_nutrients(document)

        return NutritionInfo(
            name=self.extract_name(document),
            serving_size=serving_size,
            serving_size_oz=serving_size_oz,
            dietary_tags=self.extract_dietary_tags(document),
            **nutrients,
        )

    @with_error_handling(default_return=UNKNOWN_ITEM)
    def extract_name(self, document: BeautifulSoup) -> str:
        element = document.select_one(NAME_SELECTOR)
        name = element.get_text(" ", strip=True) if element else ""
        return name or UNKNOWN_ITEM

    @staticmethod
    def _leaves(scope: Tag) -> Iterable[Tag]:
        for element in scope.find_all(True):
            if element.name in NON_CONTENT_TAGS:
                continue
            if element.find(True) is None:
                yield element

    def _find_label_leaf(self, scope: Tag, label: str) -> Optional[Tag]:
        """Leaf element whose text starts with ``label``, else one containing it."""
        wanted = label.lower()
        contains_match = None
        for leaf in self._leaves(scope):
            text = leaf.get_text(" ", strip=True).lower()
            if text.startswith(wanted):
                return leaf
            if contains_match is None and wanted in text:
                contains_match = leaf
        return contains_match

    @staticmethod
    def _text_after(text: str, label: str) -> str:
        index = text.lower().find(label.lower())
        if index < 0:
            return ""
        return text[index + len(label):]

    @with_error_handling(default_return=(DEFAULT_SERVING_SIZE, DEFAULT_SERVING_OZ))
    def extract_serving_size(self, document: BeautifulSoup) -> Tuple[str, float]:
        """
        Extract serving size text and its weight in ounces.

        Args:
            document: Parsed HTML document

        Returns:
            (display text, ounces); defaults ("1 serving", 4.0)
        """
        text = ""
        element = document.select_one(".serving-size") or document.select_one(".servingSize")
        if element:
            text = element.get_text(" ", strip=True)
        else:
            leaf = self._find_label_leaf(document, SERVING_SIZE_LABEL)
            if leaf:
                text = leaf.get_text(" ", strip=True)
                if not SERVING_SIZE_PREFIX.sub("", text).strip() and leaf.parent:
                    text = leaf.parent.get_text(" ", strip=True)
            else:
                element = document.select_one(".nutrition-facts-serving")
                if element:
                    text = element.get_text(" ", strip=True)

        text = SERVING_SIZE_PREFIX.sub("", text).strip()

        ounces = DEFAULT_SERVING_OZ
        match = OUNCES_PATTERN.search(text)
        if match:
            ounces = float(match.group(1)) or DEFAULT_SERVING_OZ

        return text or DEFAULT_SERVING_SIZE, ounces

    def _value_from_leaf(self, leaf: Tag, label: str) -> Optional[float]:
        text = leaf.get_text(" ", strip=True)
        value = self.parse_numeric_value(self._text_after(text, label))
        if value is None:
            value = self.parse_numeric_value(text)
        if value is None and leaf.parent is not None:
            value = self.parse_numeric_value(
                self._text_after(leaf.parent.get_text(" ", strip=True), label)
            )
        return value

    def find_nutrient(
        self,
        scope: Tag,
        class_names: Sequence[str],
        labels: Sequence[str]
    ) -> Optional[float]:
        """
        First numeric value found for one nutrient.

        Args:
            scope: Element to search (the nutrition label when present)
            class_names: CSS class names tried first
            labels: Visible labels tried afterwards

        Returns:
            Value, or None when nothing matched
        """
        for class_name in class_names:
            element = scope.select_one(f".{class_name}")
            if element:
                value = self.parse_numeric_value(element.get_text(" ", strip=True))
                if value is not None:
                    return value

        for label in labels:
            leaf = self._find_label_leaf(scope, label)
            if leaf:
                value = self._value_from_leaf(leaf, label)
                if value is not None:
                    return value

        return None

    @with_error_handling(default_return={})
    def extract_nutrients(self, document: BeautifulSoup) -> Dict[str, float]:
        """
        Extract every nutrient on the label.

        Args:
            document: Parsed HTML document

        Returns:
            Field name -> value; required nutrients default to 0
        """
        scope = document.select_one(NUTRITION_MARKER) or document
        nutrients: Dict[str, float] = {}

        for field, (class_names, labels) in NUTRIENT_CANDIDATES.items():
            value = self.find_nutrient(scope, class_names, labels)
            if value is None and field not in OPTIONAL_NUTRIENTS:
                value = 0.0
            if value is not None:
                nutrients[field] = value

        self.logger.debug(f"    📊 Extracted {len(nutrients)} nutrition values")
        return nutrients

    @staticmethod
    def match_tags(text: str, allowed: Optional[Iterable[DietaryTag]] = None) -> Set[DietaryTag]:
        """Dietary tags named in ``text`` (optionally limited to ``allowed``)."""
        normalized = normalize_tag_text(text)
        allowed_set = set(allowed) if allowed is not None else None
        found = set()
        for pattern, tag in TAG_PATTERNS:
            if allowed_set is not None and tag not in allowed_set:
                continue
            if pattern.search(normalized):
                found.add(tag)
        return found

    @with_error_handling(default_return=[])
    def extract_dietary_tags(self, document: BeautifulSoup) -> List[DietaryTag]:
        """
        Extract dietary and allergen tags.

        Sources:
        - Icon alt/title/class text (any tag)
        - Allergen sections (contains-* tags only)
        - Diet-classed blocks (vegan, vegetarian, halal only)

        Args:
            document: Parsed HTML document

        Returns:
            Ordered, de-duplicated tags
        """
        tags: Set[DietaryTag] = set()

        for icon in document.select(ICON_SELECTOR):
            classes = icon.get("class") or []
            if isinstance(classes, str):
                classes = [classes]
            text = " ".join([icon.get("alt", ""), icon.get("title", ""), " ".join(classes)])
            tags |= self.match_tags(text)

        contains_tags = [tag for tag in DietaryTag if tag.value.startswith("contains-")]
        for section in document.select(ALLERGEN_SELECTOR):
            tags |= self.match_tags(section.get_text(" ", strip=True), contains_tags)

        for area in document.select(DIET_AREA_SELECTOR):
            tags |= self.match_tags(area.get_text(" ", strip=True), DIET_WORD_TAGS)

        if tags:
            self.logger.debug(f"    🏷️  Tags: {', '.join(t.value for t in order_tags(tags))}")
        return order_tags(tags)
