"""
EduPath Consult — Modular Backend Package (v1.4.0)

Architecture:
  edupath/
  ├── config/        — Constants, env flags, enumerations, limits
  ├── db/            — JSON file store (optional PostgreSQL), upload storage
  ├── auth/          — bcrypt passwords, JWT session cookie, role checks
  ├── settings/      — Runtime platform settings (quota defaults, announcement)
  ├── profiles/      — Registration + profile schemas, completion, derived fields
  ├── appointments/  — Consultation bookings and status workflow
  ├── scholarships/  — Scholarship records, search filters, pagination
  ├── documents/     — Text extraction from uploaded PDFs / images / text
  ├── analysis/      — LLM document analysis, response schemas, TTL cache
  ├── feedback/      — Student feedback on analyses, admin review and stats
  ├── updates/       — Admin-published updates, targeting and read tracking
  ├── watchlist/     — Saved scholarships with application progress
  ├── export/        — CSV / TSV export of admin tables
  └── server.py      — FastAPI routing layer

Each module is self-contained with clear imports and no circular dependencies.
"""
