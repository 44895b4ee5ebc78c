"""
EduPath Consult — Admin Table Export
CSV / TSV downloads of the admin tables. Values holding the delimiter, a
quote or a line break are quoted with inner quotes doubled (csv.QUOTE_MINIMAL).
"""
import csv
import io

# (header, record key) per exportable table
EXPORT_COLUMNS = {
    "users": [
        ("ID", "id"), ("Username", "username"), ("Email", "email"), ("First Name", "firstName"),
        ("Last Name", "lastName"), ("Phone", "phoneNumber"), ("Role", "role"), ("Status", "status"),
        ("Study Destination", "studyDestination"), ("Study Level", "studyLevel"),
        ("Analyses Used", "analysisCount"), ("Max Analyses", "maxAnalyses"), ("Created At", "createdAt"),
    ],
    "appointments": [
        ("ID", "id"), ("User ID", "userId"), ("Name", "name"), ("Email", "email"),
        ("Phone", "phoneNumber"), ("Preferred Contact", "preferredContact"), ("Subject", "subject"),
        ("Message", "message"), ("Requested Date", "requestedDate"), ("Status", "status"),
        ("Created At", "createdAt"),
    ],
    "scholarships": [
        ("ID", "id"), ("Name", "name"), ("Provider", "providerName"), ("Provider Type", "providerType"),
        ("Country", "providerCountry"), ("Study Levels", "studyLevels"), ("Funding Type", "fundingType"),
        ("Min Value", "totalValueMin"), ("Max Value", "totalValueMax"), ("Currency", "currency"),
        ("Deadline", "applicationDeadline"), ("Difficulty", "difficultyLevel"), ("Status", "status"),
    ],
    "analyses": [
        ("ID", "id"), ("User ID", "userId"), ("Filename", "filename"), ("Type", "analysisType"),
        ("Summary", "summary"), ("Tokens Used", "tokensUsed"), ("Source", "source"),
        ("Created At", "createdAt"),
    ],
    "feedback": [
        ("ID", "id"), ("User ID", "userId"), ("Analysis Type", "analysisType"),
        ("Analysis ID", "analysisId"), ("Accurate", "isAccurate"), ("Helpful", "isHelpful"),
        ("Overall Rating", "overallRating"), ("Feedback", "feedback"),
        ("Suggestions", "improvementSuggestions"), ("Created At", "createdAt"),
    ],
}

DELIMITERS = {"csv": ",", "tsv": "\t"}


def cell(value) -> str:
    """Render one value: None → '', lists joined with '; ', bools lowercased."""
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (list, tuple)):
        return "; ".join(cell(v) for v in value)
    return str(value)


def to_delimited(rows: list, columns: list, delimiter: str = ",") -> str:
    """rows: list of dicts; columns: [(header, key)]."""
    out = io.StringIO()
    writer = csv.writer(out, delimiter=delimiter, quoting=csv.QUOTE_MINIMAL, lineterminator="\r\n")
    writer.writerow([h for h, _ in columns])
    for r in rows:
        writer.writerow([cell(r.get(k)) for _, k in columns])
    return out.getvalue()


def export_table(db: dict, table: str, fmt: str = "csv") -> tuple:
    """Returns (body, media_type, filename). Raises ValueError for an unknown table or format."""
    if table not in EXPORT_COLUMNS:
        raise ValueError(f"Unknown export table '{table}'")
    if fmt not in DELIMITERS:
        raise ValueError(f"Unknown export format '{fmt}'")
    body = to_delimited(db.get(table, []), EXPORT_COLUMNS[table], DELIMITERS[fmt])
    media = "text/csv" if fmt == "csv" else "text/tab-separated-values"
    print(f"[EXPORT] {table}: {len(db.get(table, []))} rows as {fmt}")
    return body, media, f"{table}_export.{fmt}"
