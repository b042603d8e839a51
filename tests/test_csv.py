import csv
import io
import warnings

import pytest
from sqlalchemy.exc import SAWarning

from library_service import csv_io
from library_service.errors import ValidationError
from library_service.models import Book


BOOKS_CSV = (
    "Title,Author,ISBN,Categories\n"
    'Dune,Frank Herbert,978-0-441-17271-9,"Sci-Fi, Classic"\n'
    ",Nameless,,\n"
    "Bad Isbn,Someone,12345,\n"
    "Dune Again,Frank Herbert,9780441172719,\n"
    "\n"
    "Emma,Jane Austen,,classic\n"
)


def _upload(client, path, content, headers):
    return client.post(
        path,
        files={"file": ("upload.csv", content.encode("utf-8"), "text/csv")},
        headers=headers,
    )


def _rows(response):
    return list(csv.reader(io.StringIO(response.content.decode("utf-8-sig"))))


def test_parse_csv_skips_blank_rows_and_normalizes_headers():
    records = csv_io.parse_csv("\ufeffName , EMAIL\n Ada , ada@example.com \n,\n".encode("utf-8"))
    assert records == [(2, {"name": "Ada", "email": "ada@example.com"})]


@pytest.mark.parametrize("content", [b"", b"title,author\n", b"title,author\n,\n"])
def test_parse_csv_rejects_files_without_data(content):
    with pytest.raises(ValidationError) as excinfo:
        csv_io.parse_csv(content)
    assert excinfo.value.message == "CSV file is empty or contains no valid data rows"


def test_import_books_reports_skipped_rows(client, member_headers):
    """
    Test bulk book import with a mix of good and bad rows.

    Internal Working:
    1. Upload a CSV with a header row and six data lines
    2. Valid rows are created, invalid rows are reported by row number
    3. Category names are created on first use, ignoring case

    Verifies:
    - 207 Multi-Status because some rows were skipped
    - The summary message and the per-row errors
    """
    response = _upload(client, "/books/bulk-import", BOOKS_CSV, member_headers)
    assert response.status_code == 207
    result = response.json()
    assert result["imported"] == 2
    assert result["message"] == "2 books imported, 3 issues."
    assert result["errors"] == [
        "Row 3: Missing required field (title/author)",
        "Row 4: Invalid ISBN (12345)",
        "Row 5: Duplicate ISBN (9780441172719)",
    ]

    books = client.get("/books", params={"sort_by": "title"}).json()["data"]
    assert [b["title"] for b in books] == ["Dune", "Emma"]
    assert [c["name"] for c in books[0]["categories"]] == ["Classic", "Sci-Fi"]
    assert [c["name"] for c in books[1]["categories"]] == ["Classic"]
    assert [c["name"] for c in client.get("/categories").json()] == ["Classic", "Sci-Fi"]


def test_import_books_all_valid(client, member_headers):
    content = "title,author\nDune,Frank Herbert\nEmma,Jane Austen\n"
    response = _upload(client, "/books/bulk-import", content, member_headers)
    assert response.status_code == 200
    assert response.json() == {"message": "2 books imported.", "imported": 2, "errors": []}


def test_import_books_rejects_existing_isbn(client, member_headers):
    client.post(
        "/books",
        json={"title": "Dune", "author": "Frank Herbert", "isbn": "0441172717"},
        headers=member_headers,
    )
    content = "title,author,isbn\nDune,Frank Herbert,0-441-17271-7\n"
    response = _upload(client, "/books/bulk-import", content, member_headers)
    assert response.status_code == 207
    assert response.json()["errors"] == ["Row 2: Duplicate ISBN (0441172717)"]


def test_import_requires_login_and_data(client, member_headers):
    assert _upload(client, "/books/bulk-import", "title,author\nA,B\n", {}).status_code == 401

    response = _upload(client, "/books/bulk-import", "", member_headers)
    assert response.status_code == 400
    assert response.json()["detail"] == "CSV file is empty or contains no valid data rows"


def test_import_members(client, member_headers):
    client.post(
        "/members",
        json={"name": "Existing", "email": "existing@example.com"},
        headers=member_headers,
    )
    content = (
        "name,email,phone\n"
        "Ada,ADA@example.com,555-0100\n"
        "Nameless,,\n"
        "Broken,not-an-email,\n"
        "Again,existing@example.com,\n"
        "Twin,ada@EXAMPLE.com,\n"
    )
    response = _upload(client, "/members/bulk-import", content, member_headers)
    assert response.status_code == 207
    result = response.json()
    assert result["imported"] == 1
    assert result["message"] == "1 members imported, 4 issues."
    assert result["errors"] == [
        "Row 3: Missing required field (name/email)",
        "Row 4: Invalid email format: not-an-email",
        "Row 5: Member with email existing@example.com already exists",
        "Row 6: Member with email ada@example.com already exists",
    ]

    members = client.get("/members", params={"search": "ada"}).json()["data"]
    assert [(m["name"], m["email"], m["phone"]) for m in members] == [
        ("Ada", "ada@example.com", "555-0100")
    ]


def test_exports_are_admin_only(client, member_headers):
    assert client.get("/export/books").status_code == 401
    assert client.get("/export/books", headers=member_headers).status_code == 403


def test_export_books(client, admin_headers):
    """
    Test the book CSV export.

    Verifies:
    - text/csv attachment with a UTF-8 byte order mark
    - header row and one row per book, categories joined with "; "
    - date filters include the end date and exclude everything outside
    """
    science = client.post("/categories", json={"name": "Science"}, headers=admin_headers).json()
    client.post(
        "/books",
        json={
            "title": "Cosmos, Revised",
            "author": "Carl Sagan",
            "isbn": "9780345539434",
            "category_ids": [science["id"]],
        },
        headers=admin_headers,
    )

    response = client.get("/export/books", headers=admin_headers)
    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/csv")
    assert response.headers["content-disposition"] == "attachment; filename=books_export.csv"
    assert response.content.startswith(b"\xef\xbb\xbf")

    rows = _rows(response)
    assert rows[0] == csv_io.BOOK_EXPORT_HEADERS
    assert rows[1][1:7] == ["Cosmos, Revised", "Carl Sagan", "9780345539434", "true", "", "Science"]

    old = client.get(
        "/export/books",
        params={"start_date": "2000-01-01", "end_date": "2000-01-02"},
        headers=admin_headers,
    )
    assert _rows(old) == [csv_io.BOOK_EXPORT_HEADERS]

    created = rows[1][7]
    same_day = client.get(
        "/export/books",
        params={"start_date": created, "end_date": created},
        headers=admin_headers,
    )
    assert len(_rows(same_day)) == 2


def test_export_members(client, admin_headers):
    client.post(
        "/members",
        json={"name": "Zoë Ångström", "email": "zoe@example.com"},
        headers=admin_headers,
    )
    response = client.get("/export/members", headers=admin_headers)
    assert response.headers["content-disposition"] == "attachment; filename=members_export.csv"

    rows = _rows(response)
    assert rows[0] == csv_io.MEMBER_EXPORT_HEADERS
    assert rows[1][1:4] == ["Zoë Ångström", "zoe@example.com", ""]


def test_export_loans_with_status(client, admin_headers, clock):
    book_ids = [
        client.post(
            "/books", json={"title": title, "author": "Author"}, headers=admin_headers
        ).json()["id"]
        for title in ["Kept", "Brought Back"]
    ]
    member_id = client.post(
        "/members", json={"name": "Reader", "email": "reader@example.com"}, headers=admin_headers
    ).json()["id"]
    loan_ids = [
        client.post(
            "/loans", json={"book_id": book_id, "member_id": member_id}, headers=admin_headers
        ).json()["id"]
        for book_id in book_ids
    ]
    clock.advance(days=3)
    client.post(f"/loans/{loan_ids[1]}/return", headers=admin_headers)

    response = client.get("/export/loans", headers=admin_headers)
    rows = _rows(response)
    assert rows[0] == csv_io.LOAN_EXPORT_HEADERS
    assert len(rows) == 3

    returned = _rows(
        client.get("/export/loans", params={"status": "returned"}, headers=admin_headers)
    )
    assert len(returned) == 2
    record = dict(zip(returned[0], returned[1]))
    assert record["book_title"] == "Brought Back"
    assert record["member_email"] == "reader@example.com"
    assert record["borrow_date"] == "2024-03-01"
    assert record["due_date"] == "2024-03-15"
    assert record["return_date"] == "2024-03-04"
    assert record["status"] == "returned"

    window = _rows(
        client.get(
            "/export/loans",
            params={"start_date": "2024-03-02", "end_date": "2024-03-31"},
            headers=admin_headers,
        )
    )
    assert window == [csv_io.LOAN_EXPORT_HEADERS]


def test_import_books_tags_categories_cleanly(db):
    content = (
        "title,author,categories\n"
        'Dune,Frank Herbert,"Sci-Fi, Classic"\n'
        "Emma,Jane Austen,classic\n"
    ).encode("utf-8")

    with warnings.catch_warnings():
        warnings.simplefilter("error", SAWarning)
        result = csv_io.import_books(db, content)

    assert result["imported"] == 2
    dune = db.query(Book).filter(Book.title == "Dune").one()
    emma = db.query(Book).filter(Book.title == "Emma").one()
    assert [c.name for c in dune.categories] == ["Classic", "Sci-Fi"]
    assert [c.name for c in emma.categories] == ["Classic"]
