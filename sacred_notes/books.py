"""
The 66-book Protestant canon.

Book codes, display names, chapter counts, abbreviations and the names used
by the external Bible-text APIs.
"""

from typing import NamedTuple


class Book(NamedTuple):
    code: str
    name: str
    chapters: int
    api_name: str


BOOKS: list[Book] = [
    Book("GEN", "Genesis", 50, "genesis"),
    Book("EXO", "Exodus", 40, "exodus"),
    Book("LEV", "Leviticus", 27, "leviticus"),
    Book("NUM", "Numbers", 36, "numbers"),
    Book("DEU", "Deuteronomy", 34, "deuteronomy"),
    Book("JOS", "Joshua", 24, "joshua"),
    Book("JDG", "Judges", 21, "judges"),
    Book("RUT", "Ruth", 4, "ruth"),
    Book("1SA", "1 Samuel", 31, "1samuel"),
    Book("2SA", "2 Samuel", 24, "2samuel"),
    Book("1KI", "1 Kings", 22, "1kings"),
    Book("2KI", "2 Kings", 25, "2kings"),
    Book("1CH", "1 Chronicles", 29, "1chronicles"),
    Book("2CH", "2 Chronicles", 36, "2chronicles"),
    Book("EZR", "Ezra", 10, "ezra"),
    Book("NEH", "Nehemiah", 13, "nehemiah"),
    Book("EST", "Esther", 10, "esther"),
    Book("JOB", "Job", 42, "job"),
    Book("PSA", "Psalms", 150, "psalms"),
    Book("PRO", "Proverbs", 31, "proverbs"),
    Book("ECC", "Ecclesiastes", 12, "ecclesiastes"),
    Book("SNG", "Song of Solomon", 8, "songofsolomon"),
    Book("ISA", "Isaiah", 66, "isaiah"),
    Book("JER", "Jeremiah", 52, "jeremiah"),
    Book("LAM", "Lamentations", 5, "lamentations"),
    Book("EZK", "Ezekiel", 48, "ezekiel"),
    Book("DAN", "Daniel", 12, "daniel"),
    Book("HOS", "Hosea", 14, "hosea"),
    Book("JOL", "Joel", 3, "joel"),
    Book("AMO", "Amos", 9, "amos"),
    Book("OBA", "Obadiah", 1, "obadiah"),
    Book("JON", "Jonah", 4, "jonah"),
    Book("MIC", "Micah", 7, "micah"),
    Book("NAM", "Nahum", 3, "nahum"),
    Book("HAB", "Habakkuk", 3, "habakkuk"),
    Book("ZEP", "Zephaniah", 3, "zephaniah"),
    Book("HAG", "Haggai", 2, "haggai"),
    Book("ZEC", "Zechariah", 14, "zechariah"),
    Book("MAL", "Malachi", 4, "malachi"),
    Book("MAT", "Matthew", 28, "matthew"),
    Book("MRK", "Mark", 16, "mark"),
    Book("LUK", "Luke", 24, "luke"),
    Book("JHN", "John", 21, "john"),
    Book("ACT", "Acts", 28, "acts"),
    Book("ROM", "Romans", 16, "romans"),
    Book("1CO", "1 Corinthians", 16, "1corinthians"),
    Book("2CO", "2 Corinthians", 13, "2corinthians"),
    Book("GAL", "Galatians", 6, "galatians"),
    Book("EPH", "Ephesians", 6, "ephesians"),
    Book("PHP", "Philippians", 4, "philippians"),
    Book("COL", "Colossians", 4, "colossians"),
    Book("1TH", "1 Thessalonians", 5, "1thessalonians"),
    Book("2TH", "2 Thessalonians", 3, "2thessalonians"),
    Book("1TI", "1 Timothy", 6, "1timothy"),
    Book("2TI", "2 Timothy", 4, "2timothy"),
    Book("TIT", "Titus", 3, "titus"),
    Book("PHM", "Philemon", 1, "philemon"),
    Book("HEB", "Hebrews", 13, "hebrews"),
    Book("JAS", "James", 5, "james"),
    Book("1PE", "1 Peter", 5, "1peter"),
    Book("2PE", "2 Peter", 3, "2peter"),
    Book("1JN", "1 John", 5, "1john"),
    Book("2JN", "2 John", 1, "2john"),
    Book("3JN", "3 John", 1, "3john"),
    Book("JUD", "Jude", 1, "jude"),
    Book("REV", "Revelation", 22, "revelation"),
]

BOOKS_BY_CODE: dict[str, Book] = {b.code: b for b in BOOKS}
BOOK_ORDER: dict[str, int] = {b.code: i for i, b in enumerate(BOOKS)}

# Common abbreviations that are not derivable from the code or the name
_EXTRA_ABBREVIATIONS = {
    "ex": "EXO", "deut": "DEU", "josh": "JOS", "judg": "JDG",
    "1sam": "1SA", "2sam": "2SA", "1kgs": "1KI", "2kgs": "2KI",
    "1chr": "1CH", "2chr": "2CH", "ps": "PSA", "psalm": "PSA", "prov": "PRO",
    "eccl": "ECC", "song": "SNG", "sos": "SNG", "song of songs": "SNG",
    "ezek": "EZK", "obad": "OBA", "nah": "NAM", "zeph": "ZEP", "zech": "ZEC",
    "matt": "MAT", "mk": "MRK", "lk": "LUK", "jn": "JHN",
    "1cor": "1CO", "2cor": "2CO", "phil": "PHP", "1thess": "1TH", "2thess": "2TH",
    "1tim": "1TI", "2tim": "2TI", "phlm": "PHM", "1pet": "1PE", "2pet": "2PE",
    "rev": "REV",
}


def _build_abbreviations() -> dict[str, str]:
    abbreviations: dict[str, str] = {}
    for book in BOOKS:
        name = book.name.lower()
        abbreviations[book.code.lower()] = book.code
        abbreviations[name] = book.code
        abbreviations[name.replace(" ", "")] = book.code
        # "rom", "gen", "1 cor"
        if name[0].isdigit():
            abbreviations[f"{name[:2]}{name[2:5]}"] = book.code
            abbreviations[f"{name[0]}{name[2:5]}"] = book.code
        else:
            abbreviations[name[:3]] = book.code
    abbreviations.update(_EXTRA_ABBREVIATIONS)
    return abbreviations


ABBREVIATIONS: dict[str, str] = _build_abbreviations()


def resolve_book(text: str) -> Book | None:
    """Resolve a book name, code or abbreviation to a Book.

    Falls back to a prefix match on the full name ("revel" -> Revelation).
    """
    if not text:
        return None
    normalized = " ".join(text.strip().lower().replace(".", "").split())
    code = ABBREVIATIONS.get(normalized) or ABBREVIATIONS.get(normalized.replace(" ", ""))
    if code:
        return BOOKS_BY_CODE[code]
    for book in BOOKS:
        if book.name.lower().startswith(normalized):
            return book
    return None
