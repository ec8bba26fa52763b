# block_parser.py
# Splits a page into sections and named blocks with BeautifulSoup, and derives
# per-block design tokens, a content-model skeleton and CSS custom properties.

import re
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from bs4 import BeautifulSoup, Tag

SECTION_CLASS = 'section'

# Layout, utility and media classes that never name a block
NON_BLOCK_CLASSES = {
    'section', 'section-metadata', 'button-container', 'default-content-wrapper',
    'icon', 'picture', 'image', 'video',
}
SYSTEM_BLOCKS = {'section', 'default-content', 'fragment'}
VARIANT_IGNORED_CLASSES = {'block', 'wrapper', 'container'}

CONTAINER_TAGS = {'div', 'span', 'section'}
TEXT_TAGS = {'h1', 'h2', 'h3', 'h4', 'h5', 'h6', 'p'}
IMAGE_TAGS = {'img', 'picture', 'video', 'svg'}
LIST_TAGS = {'ul', 'ol'}

INTERACTION_ATTRIBUTES = ('tabindex', 'aria-expanded', 'aria-controls')

COLOR_PATTERNS = [
    re.compile(r'#[0-9a-fA-F]{3,8}'),
    re.compile(r'rgb\([^)]+\)'),
    re.compile(r'rgba\([^)]+\)'),
    re.compile(r'hsl\([^)]+\)'),
]
FONT_PATTERN = re.compile(r'font-family:\s*([^;}"]+)', re.IGNORECASE)
SPACING_PATTERN = re.compile(r'(?:margin|padding|gap)(?:-[a-z]+)?:\s*([^;}"]+)', re.IGNORECASE)
VAR_USAGE_PATTERN = re.compile(r'var\((--[^,)]+)(?:,\s*([^)]+))?\)')
VAR_DECLARATION_PATTERN = re.compile(r'(--[a-z-]+):\s*([^;}"]+)', re.IGNORECASE)


@dataclass
class ExtractedBlock:
    name: str
    variant: Optional[str]
    html: str
    cleaned_html: str
    section_index: int = 0
    has_javascript: bool = False
    has_interactivity: bool = False
    design_tokens: Dict[str, list] = field(default_factory=dict)
    content_model: Dict[str, list] = field(default_factory=dict)
    css_variables: Dict[str, str] = field(default_factory=dict)
    bounding_box: Dict[str, int] = field(default_factory=lambda: {'x': 0, 'y': 0, 'width': 0, 'height': 0})


def _classes(element: Tag) -> List[str]:
    value = element.get('class') or []
    if isinstance(value, str):
        value = value.split()
    return [c for c in value if c]


def find_sections(soup: BeautifulSoup) -> List[Tag]:
    """
    Top-level section containers: divs whose first class is ``section``.

    Compound classes such as ``section-metadata`` are not sections, and a
    section nested in another section belongs to its parent.
    """
    sections = []
    for div in soup.find_all('div'):
        classes = _classes(div)
        if not classes or classes[0] != SECTION_CLASS:
            continue
        if any(SECTION_CLASS in _classes(parent)[:1] for parent in div.find_parents('div')):
            continue
        sections.append(div)
    return sections


def is_candidate_name(name: str, class_attr: str) -> bool:
    if not name or name in NON_BLOCK_CLASSES or name.lower() in SYSTEM_BLOCKS:
        return False
    if name.startswith('icon-'):
        return False
    if 'section-metadata' in class_attr:
        return False
    # Wrappers around a block carry the block's name as a prefix
    if name.endswith('-wrapper') or name.endswith('-container'):
        return False
    return True


def extract_variant(name: str, classes: List[str]) -> Optional[str]:
    """First additional class of the form ``{name}-*``, ignoring the wrapper suffix"""
    for cls in classes[1:]:
        if cls in VARIANT_IGNORED_CLASSES or cls.startswith('inview-'):
            continue
        if cls == f"{name}-wrapper":
            continue
        if cls.startswith(f"{name}-"):
            return cls
    return None


def clean_block_html(element: Tag) -> str:
    """
    Copy of the block markup with inline styles, non-semantic data attributes
    and empty class attributes removed, and whitespace collapsed.
    """
    copy = BeautifulSoup(str(element), 'html.parser')
    for tag in copy.find_all(True):
        for attr in list(tag.attrs):
            if attr == 'style':
                del tag[attr]
            elif attr.startswith('data-') and attr != 'data-block-name':
                del tag[attr]
            elif attr == 'class' and not _classes(tag):
                del tag[attr]

    html = str(copy)
    html = re.sub(r'\s+', ' ', html)
    html = re.sub(r'\s*>', '>', html)
    html = re.sub(r'<\s*', '<', html)
    return html.strip()


def detect_javascript(element: Tag) -> bool:
    if element.find('script') is not None:
        return True
    for tag in [element] + element.find_all(True):
        for attr in tag.attrs:
            if attr.startswith('on') or attr == 'data-block-status':
                return True
    return False


def detect_interactivity(element: Tag, has_javascript: bool) -> bool:
    if has_javascript:
        return True
    for tag in [element] + element.find_all(True):
        if tag.get('role') == 'button':
            return True
        if any(attr in tag.attrs for attr in INTERACTION_ATTRIBUTES):
            return True
    return False


def _unique(values):
    seen = []
    for value in values:
        if value and value not in seen:
            seen.append(value)
    return seen


def extract_design_tokens(html: str) -> Dict[str, list]:
    colors = []
    for pattern in COLOR_PATTERNS:
        colors.extend(pattern.findall(html))

    fonts = []
    for match in FONT_PATTERN.finditer(html):
        fonts.extend(f.strip().replace('"', '').replace("'", '') for f in match.group(1).split(','))

    spacing = []
    for match in SPACING_PATTERN.finditer(html):
        spacing.extend(match.group(1).split())

    return {
        'colors': _unique(colors),
        'fonts': _unique(fonts),
        'spacing': _unique(spacing),
        'breakpoints': [],
    }


def extract_content_model(element: Tag) -> Dict[str, list]:
    structure = []
    seen = set()
    for tag in element.find_all(True):
        name = tag.name.lower()
        if name in CONTAINER_TAGS:
            continue

        if name in TEXT_TAGS:
            node_type = 'text'
        elif name in IMAGE_TAGS:
            node_type = 'image'
        elif name == 'a':
            node_type = 'link'
        elif name in LIST_TAGS:
            node_type = 'list'
        else:
            node_type = 'element'

        class_name = ' '.join(_classes(tag)) or None
        key = f"{name}:{class_name or ''}"
        if key in seen:
            continue
        seen.add(key)

        node = {'type': node_type, 'tag': name}
        if class_name:
            node['className'] = class_name
        structure.append(node)

    required, optional = [], []
    if element.find(['h1', 'h2', 'h3', 'h4', 'h5', 'h6']) is not None:
        required.append('heading')
    if element.find('p') is not None:
        optional.append('paragraph')
    if element.find(['img', 'picture']) is not None:
        optional.append('image')
    if element.find('a') is not None:
        optional.append('link')
    if element.find(['ul', 'ol']) is not None:
        optional.append('list')

    return {'structure': structure, 'requiredFields': required, 'optionalFields': optional}


def extract_css_variables(html: str) -> Dict[str, str]:
    """Custom properties from var() usages (first wins) and declarations (override)"""
    variables: Dict[str, str] = {}
    for match in VAR_USAGE_PATTERN.finditer(html):
        name = match.group(1).strip()
        if name not in variables:
            variables[name] = (match.group(2) or '').strip()
    for match in VAR_DECLARATION_PATTERN.finditer(html):
        variables[match.group(1)] = match.group(2).strip()
    return variables


def build_block(element: Tag, name: str, variant: Optional[str], section_index: int) -> ExtractedBlock:
    html = str(element)
    has_javascript = detect_javascript(element)
    return ExtractedBlock(
        name=name,
        variant=variant,
        html=html,
        cleaned_html=clean_block_html(element),
        section_index=section_index,
        has_javascript=has_javascript,
        has_interactivity=detect_interactivity(element, has_javascript),
        design_tokens=extract_design_tokens(html),
        content_model=extract_content_model(element),
        css_variables=extract_css_variables(html),
    )


def _scan_scope(scope: Tag, section_index: int) -> List[ExtractedBlock]:
    blocks = []
    seen_names = set()
    accepted = {}
    for div in scope.find_all('div'):
        classes = _classes(div)
        if not classes:
            continue
        name = classes[0]
        if not is_candidate_name(name, ' '.join(classes)):
            continue
        if name in seen_names:
            continue
        # Rows and cells named after an enclosing block are part of it
        if any(id(parent) in accepted and name.startswith(f"{accepted[id(parent)]}-")
               for parent in div.parents):
            continue
        seen_names.add(name)
        accepted[id(div)] = name
        blocks.append(build_block(div, name, extract_variant(name, classes), section_index))
    return blocks


def extract_blocks(html: str) -> List[ExtractedBlock]:
    """
    Extract named blocks from page HTML.

    Sections are scanned independently; when a page has no section
    containers the ``<main>`` element is used as the single scope.
    Unrecognised markup is skipped, never raised.
    """
    if not html:
        return []

    soup = BeautifulSoup(html, 'html.parser')
    scopes = find_sections(soup)
    if not scopes:
        main = soup.find('main')
        scopes = [main] if main is not None else []

    blocks = []
    for index, scope in enumerate(scopes):
        blocks.extend(_scan_scope(scope, index))
    return blocks


def count_blocks(html: str) -> int:
    return len(extract_blocks(html))
