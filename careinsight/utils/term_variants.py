"""
Canonical term matching across Japanese text-encoding variants.

Staff type the same drug or care term as full-width katakana, half-width
katakana or hiragana, and sometimes as its generic chemical name. Matching
runs on normalised text (NFKC, hiragana folded to katakana, lowercase) and
on an explicit table for spellings that normalisation cannot unify.
"""

import unicodedata
from typing import Dict, Iterable, Tuple

# Hiragana block that has a katakana counterpart at +0x60
_HIRAGANA_START = 0x3041
_HIRAGANA_END = 0x3096
_KATAKANA_SHIFT = 0x60

# Canonical term -> every spelling that must match as the same term
CANONICAL_TERMS: Dict[str, Tuple[str, ...]] = {
    'マグミット': ('マグミット', 'ﾏｸﾞﾐｯﾄ', 'まぐみっと', '酸化マグネシウム', '酸化Mg'),
    '頓服': ('頓服', 'とんぷく', 'トンプク'),
    '排便': ('排便', 'はいべん', '便通'),
}


def normalize_text(text: str) -> str:
    """Fold width, kana script and case so variants compare equal."""
    folded = unicodedata.normalize('NFKC', text)
    chars = []
    for ch in folded:
        code = ord(ch)
        if _HIRAGANA_START <= code <= _HIRAGANA_END:
            ch = chr(code + _KATAKANA_SHIFT)
        chars.append(ch)
    return ''.join(chars).lower()


def canonical_term(term: str) -> str:
    """Return the canonical spelling of ``term`` (itself if unknown)."""
    needle = normalize_text(term)
    for canonical, variants in CANONICAL_TERMS.items():
        if any(normalize_text(v) == needle for v in variants):
            return canonical
    return term


def variants_for(term: str) -> Tuple[str, ...]:
    """Every known spelling of ``term``, including ``term`` itself."""
    canonical = canonical_term(term)
    variants = CANONICAL_TERMS.get(canonical)
    if variants is None:
        return (term,)
    if term in variants:
        return variants
    return variants + (term,)


def contains_any(text: str, variants: Iterable[str]) -> bool:
    """True when normalised ``text`` contains any normalised variant."""
    haystack = normalize_text(text)
    return any(normalize_text(v) in haystack for v in variants if v)
