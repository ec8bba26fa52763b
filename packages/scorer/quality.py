# quality.py
# Multi-axis heuristic quality scoring for extracted blocks.
#
# Each axis starts from a baseline and adds or subtracts bounded deltas for
# signals found in the block markup, then is clamped to [0, 100]. The overall
# score is the fixed-weight sum of the six axes, rounded half up.

import math
import re

WEIGHTS = {
    'performance': 0.25,
    'accessibility': 0.20,
    'semantic_html': 0.15,
    'code_quality': 0.15,
    'responsive': 0.15,
    'eds_compliance': 0.10,
}

TIER_THRESHOLDS = [(98, 'gold'), (93, 'silver'), (85, 'bronze')]
UNRATED = 'unrated'
TIERS = ('gold', 'silver', 'bronze', UNRATED)

SEMANTIC_TAGS = ['article', 'section', 'nav', 'aside', 'header', 'footer', 'figure', 'details', 'summary']
FRAMEWORK_ARTIFACTS = ['data-reactroot', '_jsx', 'data-v-', 'v-bind', 'ng-', '_ngcontent']

SCRIPT_PATTERN = re.compile(r'<script[^>]*>[\s\S]*?</script>', re.IGNORECASE)
IMG_PATTERN = re.compile(r'<img[^>]*>', re.IGNORECASE)
ANCHOR_PATTERN = re.compile(r'<a\b[^>]*>', re.IGNORECASE)
HREF_PATTERN = re.compile(r"""\bhref\s*=\s*(?:"([^"]*)"|'([^']*)'|([^\s>]+))""", re.IGNORECASE)
HEADING_PATTERN = re.compile(r'<h([1-6])[^>]*>', re.IGNORECASE)
LIST_ITEM_PATTERN = re.compile(r'<li', re.IGNORECASE)
CLASS_ATTR_PATTERN = re.compile(r'class="([^"]+)"')
CAMEL_CASE_PATTERN = re.compile(r'[a-z][A-Z]')
INLINE_HANDLER_PATTERN = re.compile(r'on\w+="', re.IGNORECASE)
DEPRECATED_TAG_PATTERN = re.compile(r'<(font|center|marquee|blink|strike|big|tt)\b', re.IGNORECASE)
EMPTY_ATTR_PATTERN = re.compile(r'\w+=""')
FIXED_WIDTH_PATTERN = re.compile(r'width:\s*[89]\d{2,}px|width:\s*\d{4,}px', re.IGNORECASE)
BLOCK_CLASS_PATTERN = re.compile(r'class="[a-z][a-z0-9-]*"', re.IGNORECASE)
NESTED_CLASS_PATTERN = re.compile(r'class="[a-z][a-z0-9-]*-[a-z]+"', re.IGNORECASE)
NESTED_DIV_PATTERN = re.compile(r'<div[^>]*>[\s\S]*?<div[^>]*>[\s\S]*?<div', re.IGNORECASE)


def _issue(category, severity, message):
    return {'category': category, 'severity': severity, 'message': message}


def _clamp(score):
    return min(100, max(0, score))


def _link_target(anchor):
    match = HREF_PATTERN.search(anchor)
    if not match:
        return ''
    return next(group for group in match.groups() if group is not None).strip()


def _is_dead_link(anchor):
    # Missing, empty and bare-fragment targets lead nowhere
    return _link_target(anchor) in ('', '#')


def get_tier(score):
    for threshold, tier in TIER_THRESHOLDS:
        if score >= threshold:
            return tier
    return UNRATED


def round_half_up(value):
    return int(math.floor(value + 0.5))


def score_performance(html):
    score = 40
    issues = []

    inline_styles = html.count('style="')
    if inline_styles == 0:
        score += 20
    elif inline_styles <= 2:
        score += 10
    elif inline_styles > 5:
        score -= 10
        issues.append(_issue('performance', 'warning', f"Excessive inline styles ({inline_styles})"))

    size = len(html)
    if size < 2000:
        score += 15
    elif size < 5000:
        score += 10
    elif size < 15000:
        score += 5
    elif size > 30000:
        score -= 15
        issues.append(_issue('performance', 'error', f"Large block HTML ({round(size / 1000)}KB)"))

    if not SCRIPT_PATTERN.search(html):
        score += 15
    else:
        score -= 15
        issues.append(_issue('performance', 'warning', 'Inline scripts detected'))

    if '<img' in html:
        if 'loading="lazy"' in html or "loading='lazy'" in html:
            score += 10
        else:
            score -= 5
            issues.append(_issue('performance', 'info', 'Images missing lazy loading'))

        if 'width=' in html and 'height=' in html:
            score += 10
        else:
            score -= 5
            issues.append(_issue('performance', 'info', 'Images missing dimensions'))
    else:
        score += 10

    return _clamp(score), issues


def score_accessibility(html):
    score = 50
    issues = []

    images = IMG_PATTERN.findall(html)
    if images:
        coverage = sum(1 for img in images if 'alt=' in img) / len(images)
        if coverage == 1:
            score += 25
        elif coverage >= 0.8:
            score += 18
        else:
            score += 8
            issues.append(_issue('accessibility', 'warning', 'Some images missing alt text'))
    else:
        score += 15

    links = ANCHOR_PATTERN.findall(html)
    if links:
        bad_links = [link for link in links if _is_dead_link(link)]
        score += 15 if not bad_links else 8
    else:
        score += 12

    # ARIA is a bonus; simple blocks do not need it
    score += 10 if ('aria-' in html or 'role=' in html) else 5

    score += 10 if HEADING_PATTERN.search(html) else 5

    return _clamp(score), issues


def score_semantic_html(html):
    # Div-based block structure is the convention, so it is not penalized
    score = 60
    issues = []

    levels = [int(level) for level in HEADING_PATTERN.findall(html)]
    if levels:
        has_skip = any(levels[i] > levels[i - 1] + 1 for i in range(1, len(levels)))
        if not has_skip and len(levels) >= 2:
            score += 20
        elif not has_skip:
            score += 15
        else:
            score += 8
            issues.append(_issue('semantic_html', 'info', 'Heading levels skipped'))
    else:
        score += 10

    has_list = '<ul' in html or '<ol' in html
    has_items = LIST_ITEM_PATTERN.search(html) is not None
    if has_list and has_items:
        score += 15
    elif has_list or has_items:
        score += 10
    else:
        score += 8

    lowered = html.lower()
    semantic_count = sum(1 for tag in SEMANTIC_TAGS if f"<{tag}" in lowered)
    if semantic_count >= 2:
        score += 15
    elif semantic_count == 1:
        score += 10
    else:
        score += 5

    if '<picture' in html:
        score += 10
    elif '<img' in html:
        score += 5

    return _clamp(score), issues


def score_code_quality(html):
    score = 35
    issues = []

    class_attrs = CLASS_ATTR_PATTERN.findall(html)
    class_names = [name for attr in class_attrs for name in attr.split() if name]

    if class_names:
        has_bem = any('__' in c or '--' in c for c in class_names)
        mostly_kebab = sum(1 for c in class_names if '-' in c) / len(class_names) > 0.5
        has_camel = any(CAMEL_CASE_PATTERN.search(c) for c in class_names)
        average_length = sum(len(c) for c in class_names) / len(class_names)
        good_length = 3 <= average_length <= 25
        short_count = sum(1 for c in class_names if len(c) <= 4)
        utility_spam = short_count / len(class_names) > 0.6 and len(class_names) > 5

        if has_bem and good_length:
            score += 25
        elif mostly_kebab and not has_camel and good_length:
            score += 20
        elif good_length and not utility_spam:
            score += 12
        elif utility_spam:
            score -= 5
            issues.append(_issue('code_quality', 'info', 'Heavy utility class usage (consider semantic classes)'))
        else:
            score += 5

        max_classes = max(len(attr.split()) for attr in class_attrs)
        if max_classes > 15:
            score -= 10
            issues.append(_issue('code_quality', 'warning',
                                 f"Excessive class count ({max_classes} classes on one element)"))
        elif max_classes > 10:
            score -= 5
            issues.append(_issue('code_quality', 'info', 'High class count on element'))
    else:
        score += 8

    handlers = INLINE_HANDLER_PATTERN.findall(html)
    if not handlers:
        score += 20
    else:
        score -= 15
        issues.append(_issue('code_quality', 'warning', f"Inline event handlers detected ({len(handlers)})"))

    if not DEPRECATED_TAG_PATTERN.search(html):
        score += 15
    else:
        score -= 15
        issues.append(_issue('code_quality', 'error', 'Deprecated HTML elements used'))

    lines = html.split('\n')
    average_line = len(html) / max(1, len(lines))
    if len(lines) > 3 and average_line < 150:
        score += 10
    elif len(lines) > 1 and average_line < 250:
        score += 5
    elif average_line > 500:
        score -= 5
        issues.append(_issue('code_quality', 'info', 'HTML not properly formatted (long lines)'))

    # alt="" is valid for decorative images
    empty_attrs = [a for a in EMPTY_ATTR_PATTERN.findall(html) if a != 'alt=""']
    if not empty_attrs:
        score += 5
    elif len(empty_attrs) > 3:
        score -= 5
        issues.append(_issue('code_quality', 'info', 'Multiple empty attributes found'))

    return _clamp(score), issues


def score_responsive(html):
    score = 55
    issues = []

    if '<img' in html or '<picture' in html:
        has_picture = '<picture' in html
        has_srcset = 'srcset=' in html
        has_source = '<source' in html
        if has_picture and has_srcset and has_source:
            score += 35
        elif has_picture and has_srcset:
            score += 30
        elif has_picture or has_srcset:
            score += 20
        else:
            score += 5
            issues.append(_issue('responsive', 'info', 'Consider using picture/srcset for responsive images'))
    else:
        score += 20

    if not FIXED_WIDTH_PATTERN.search(html):
        score += 10

    return _clamp(score), issues


def score_eds_compliance(html):
    score = 50
    issues = []

    has_block_class = BLOCK_CLASS_PATTERN.search(html) is not None
    has_nested_class = NESTED_CLASS_PATTERN.search(html) is not None
    if has_block_class and has_nested_class:
        score += 20
    elif has_block_class:
        score += 15
    else:
        score += 5

    div_count = html.count('<div')
    if div_count >= 3 and NESTED_DIV_PATTERN.search(html):
        score += 15
    elif div_count >= 2:
        score += 12
    else:
        score += 8

    if '<picture' in html and '<source' in html and '<img' in html:
        score += 15
    elif '<picture' in html:
        score += 12
    elif '<img' in html:
        score += 8
    else:
        score += 5

    if not any(artifact in html for artifact in FRAMEWORK_ARTIFACTS):
        score += 10
    else:
        issues.append(_issue('eds_compliance', 'warning', 'Framework artifacts detected (blocks should be vanilla HTML)'))

    links = ANCHOR_PATTERN.findall(html)
    if links:
        bad_links = [link for link in links
                     if _is_dead_link(link) or _link_target(link).lower().startswith('javascript:')]
        score += 10 if not bad_links else 5
    else:
        score += 8

    return _clamp(score), issues


AXIS_SCORERS = [
    ('performance', score_performance),
    ('accessibility', score_accessibility),
    ('semantic_html', score_semantic_html),
    ('code_quality', score_code_quality),
    ('responsive', score_responsive),
    ('eds_compliance', score_eds_compliance),
]


def overall_from_breakdown(breakdown):
    return round_half_up(sum(breakdown[axis] * weight for axis, weight in WEIGHTS.items()))


def score_block(html, has_javascript=False, has_interactivity=False):
    """
    Score one block's markup.

    The flags are accepted for callers that have them; the axes read the
    markup directly.

    Returns:
        dict with overall, breakdown, issues and tier
    """
    html = html or ''
    breakdown = {}
    issues = []
    for axis, scorer in AXIS_SCORERS:
        breakdown[axis], axis_issues = scorer(html)
        issues.extend(axis_issues)

    overall = overall_from_breakdown(breakdown)
    return {
        'overall': overall,
        'breakdown': breakdown,
        'issues': issues,
        'tier': get_tier(overall),
    }
