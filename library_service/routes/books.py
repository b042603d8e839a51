import logging
from typing import Callable, Literal, Optional

from fastapi import APIRouter, Depends, File, Query, Response, UploadFile, status
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from library_service import catalog, csv_io, loans, schemas
from library_service.auth import get_current_user
from library_service.database import get_db
from library_service.dependencies import PageParams, get_clock, page_params, parse_id_list


logger = logging.getLogger(__name__)

router = APIRouter(prefix="/books", tags=["books"])


@router.get("", response_model=schemas.BookPage)
def list_books(
    search: Optional[str] = Query(None, description="Matches title, author or ISBN"),
    available: Optional[bool] = Query(None),
    category_ids: Optional[str] = Query(None, description="Comma separated category ids"),
    sort_by: Optional[str] = Query(None, description="id, title, author, isbn or available"),
    sort_order: Optional[Literal["asc", "desc"]] = Query(None),
    paging: PageParams = Depends(page_params),
    db: Session = Depends(get_db),
):
    """
    List books with search, availability and category filters.

    Categories are included with every book; unknown sort columns fall
    back to id.
    """
    page = catalog.list_books(
        db,
        search=search,
        available=available,
        category_ids=parse_id_list(category_ids),
        sort_by=sort_by,
        sort_order=sort_order,
        page=paging.page,
        limit=paging.limit,
    )
    return page.to_dict()


@router.post(
    "",
    response_model=schemas.Book,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(get_current_user)],
)
def create_book(book: schemas.BookCreate, db: Session = Depends(get_db)):
    """
    Create a new book (requires login).

    Raises:
        404 if a category id does not exist, 409 if the ISBN is taken
    """
    return catalog.create_book(db, book)


@router.post(
    "/bulk-import",
    response_model=schemas.ImportResult,
    dependencies=[Depends(get_current_user)],
)
def bulk_import_books(file: UploadFile = File(...), db: Session = Depends(get_db)):
    """
    Import books from an uploaded CSV file.

    Answers 207 when some rows were skipped; the skipped rows are listed
    under errors.
    """
    content = file.file.read()
    logger.info("CSV upload %s (%d bytes) for book import", file.filename, len(content))

    result = csv_io.import_books(db, content)
    logger.info("Book import: %s", result["message"])
    if result["errors"]:
        return JSONResponse(status_code=status.HTTP_207_MULTI_STATUS, content=result)
    return result


@router.get("/{book_id}", response_model=schemas.Book)
def get_book(book_id: int, db: Session = Depends(get_db)):
    return catalog.get_book(db, book_id)


@router.put(
    "/{book_id}",
    response_model=schemas.Book,
    dependencies=[Depends(get_current_user)],
)
def update_book(book_id: int, book_update: schemas.BookUpdate, db: Session = Depends(get_db)):
    """
    Update a book's information (requires login).

    Partial update: only the fields present in the body change. The
    availability flag is not editable here.
    """
    return catalog.update_book(db, book_id, book_update)


@router.delete(
    "/{book_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    dependencies=[Depends(get_current_user)],
)
def delete_book(book_id: int, db: Session = Depends(get_db)):
    """Delete a book and, with it, every loan of that book."""
    catalog.delete_book(db, book_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/{book_id}/loans", response_model=schemas.LoanPage)
def get_book_loans(
    book_id: int,
    paging: PageParams = Depends(page_params),
    db: Session = Depends(get_db),
    clock: Callable = Depends(get_clock),
):
    catalog.get_book(db, book_id)
    page = loans.list_loans(db, clock(), book_id=book_id, page=paging.page, limit=paging.limit)
    return page.to_dict()
