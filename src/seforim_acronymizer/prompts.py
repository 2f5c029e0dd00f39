"""
Prompt text and few-shot examples for the acronymizer LLM calls.
"""

from .models import AcronymList

SYSTEM_PROMPT = """\
You are an expert in Hebrew rabbinic literature and its bibliographic conventions.

For the Hebrew term you are given (a book title or a table-of-contents entry),
list the ATTESTED acronyms and abbreviations that stand for the COMPLETE term.

Rules:
1. Only list forms you know to be in real use. Never invent an abbreviation.
2. Include display variants of each form: Hebrew gershayim (״) and ASCII
   double quotes ("), geresh (׳) and apostrophe ('), with and without a
   trailing period, and with spaces or maqaf (־) between words.
3. A well-known synonym of the work counts (e.g. רמב"ם for משנה תורה),
   combined with the rest of the term.
4. For "הלכות X" you may also give the shortened form without "הלכות".
5. Never use a comma inside an item.
6. Copy the input term exactly into "term", without normalization.
7. If nothing attested can be verified, return an empty "items" list.

Answer only with JSON matching the schema.
"""

UNIFORMIZE_PROMPT = """\
You are reviewing a block of Hebrew acronym lists produced one title at a time.

Some titles in the block are near-duplicates or belong to the same work
(e.g. several "משנה תורה, הלכות ..." entries). Make their acronym sets
consistent with each other: use the same synonym forms and the same display
variants across related entries. Do not add unattested forms and do not
remove attested ones without reason.

Return exactly the same number of entries, in the same order, with each
"term" copied unchanged. Never use a comma inside an item.
Answer only with JSON matching the schema.
"""

FEW_SHOT_EXAMPLES: list[AcronymList] = [
    AcronymList(
        term="שולחן ערוך יורה דעה",
        items=[
            'שו"ע יו"ד',
            "שו״ע יו״ד",
            'שו"ע יו"ד.',
            "שו״ע יו״ד.",
            'שו"ע יוד',
            "שו״ע יוד",
        ],
    ),
    AcronymList(
        term="משנה תורה, הלכות שבועות",
        items=[
            'רמב"ם הלכות שבועות',
            "רמב״ם הלכות שבועות",
            "רמב\"ם הל' שבועות",
            'רמב"ם שבועות',
            "רמב״ם שבועות",
        ],
    ),
    AcronymList(term="הסבר כללי על הנושא", items=[]),
    AcronymList(
        term="שאלות ותשובות מן השמים",
        items=[
            'שו"ת מן השמים',
            "שו״ת מן השמים",
            'שו"ת מן־השמים',
            "שות מן השמים",
        ],
    ),
]
