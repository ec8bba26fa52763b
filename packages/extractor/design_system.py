# design_system.py
# Rolls per-block design tokens up into one site-wide design system.

import re

DEFAULT_BREAKPOINTS = {'mobile': '600px', 'tablet': '900px', 'desktop': '1200px'}
NEUTRAL_NAMES = ('gray', 'grey', 'white', 'black')

HEX_PATTERN = re.compile(r'^#([0-9a-fA-F]{3,8})$')
RGB_PATTERN = re.compile(r'^rgba?\(\s*(\d+)\s*,\s*(\d+)\s*,\s*(\d+)')


def _channels(color):
    match = HEX_PATTERN.match(color)
    if match:
        digits = match.group(1)
        if len(digits) in (3, 4):
            return [int(d * 2, 16) for d in digits[:3]]
        if len(digits) in (6, 8):
            return [int(digits[i:i + 2], 16) for i in (0, 2, 4)]
        return None
    match = RGB_PATTERN.match(color)
    if match:
        return [int(v) for v in match.groups()]
    return None


def is_neutral_color(color, tolerance=16):
    """Grays, white and black, by name or by near-equal RGB channels"""
    lowered = color.lower()
    if any(name in lowered for name in NEUTRAL_NAMES):
        return True
    channels = _channels(color)
    if channels is None:
        return False
    return max(channels) - min(channels) <= tolerance


def build_design_system(token_sets, variable_maps):
    """
    Merge block design tokens and CSS variable maps.

    Args:
        token_sets: iterable of per-block design token dicts
        variable_maps: iterable of per-block CSS variable dicts; later maps win

    Returns:
        Dict with colors, typography, spacing, breakpoints and css_variables
    """
    colors, fonts, spacing = [], [], []
    for tokens in token_sets:
        tokens = tokens or {}
        for color in tokens.get('colors') or []:
            if color not in colors:
                colors.append(color)
        for font in tokens.get('fonts') or []:
            if font not in fonts:
                fonts.append(font)
        for value in tokens.get('spacing') or []:
            if value not in spacing:
                spacing.append(value)

    css_variables = {}
    for variables in variable_maps:
        css_variables.update(variables or {})

    return {
        'colors': {
            'primary': [c for c in colors if not is_neutral_color(c)],
            'secondary': [],
            'neutral': [c for c in colors if is_neutral_color(c)],
            'semantic': {},
        },
        'typography': {
            'fontFamilies': fonts,
            'fontSizes': [],
            'fontWeights': [],
            'lineHeights': [],
        },
        'spacing': {'values': spacing, 'scale': {}},
        'breakpoints': dict(DEFAULT_BREAKPOINTS),
        'css_variables': css_variables,
    }
