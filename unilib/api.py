import logging
from datetime import date, datetime
from typing import Any, Dict, List, Optional

from fastapi import Depends, FastAPI, HTTPException, Query, Request, Security
from fastapi.responses import JSONResponse, Response
from fastapi.security import APIKeyHeader
from pydantic import BaseModel

from .borrowing import BorrowRequest
from .config import settings
from .errors import LibraryError
from .library import Library
from .reports import SummaryFilter, export_csv, member_book_summary

logger = logging.getLogger(__name__)

# Status code per error kind
_STATUS_BY_KIND = {
    "validation": 422,
    "not_found": 404,
    "conflict": 409,
    "constraint": 409,
    "storage": 503,
}


# --- Models ---
class BookCreateModel(BaseModel):
    book_id: Optional[int] = None
    title: Optional[str] = None
    isbn: Optional[str] = None
    total_copies: Optional[int] = None
    available_copies: Optional[int] = None
    author: Optional[str] = None
    publisher: Optional[str] = None
    language: Optional[str] = None
    edition: Optional[str] = None
    category: Optional[str] = None
    shelf_location: Optional[str] = None
    section: Optional[str] = None
    row_number: Optional[int] = None


class BookUpdateModel(BaseModel):
    title: Optional[str] = None
    isbn: Optional[str] = None
    total_copies: Optional[int] = None
    author: Optional[str] = None
    publisher: Optional[str] = None
    language: Optional[str] = None
    edition: Optional[str] = None
    category: Optional[str] = None
    shelf_location: Optional[str] = None
    section: Optional[str] = None
    row_number: Optional[int] = None


class BookModel(BaseModel):
    book_id: int
    title: str
    isbn: str
    total_copies: int
    available_copies: int
    author: Optional[str] = None
    publisher: Optional[str] = None
    language: Optional[str] = None
    edition: Optional[str] = None
    category: Optional[str] = None
    shelf_location: Optional[str] = None
    section: Optional[str] = None
    row_number: Optional[int] = None


class MemberCreateModel(BaseModel):
    member_id: Optional[int] = None
    full_name: Optional[str] = None
    email: Optional[str] = None
    role: Optional[str] = None
    join_date: Optional[date] = None
    phone: Optional[str] = None
    department: Optional[str] = None


class MemberUpdateModel(BaseModel):
    full_name: Optional[str] = None
    email: Optional[str] = None
    role: Optional[str] = None
    join_date: Optional[date] = None
    phone: Optional[str] = None
    department: Optional[str] = None


class MemberModel(BaseModel):
    member_id: int
    full_name: str
    email: str
    role: str
    join_date: str
    phone: Optional[str] = None
    department: Optional[str] = None
    total_borrowed: Optional[int] = None


class StaffCreateModel(BaseModel):
    staff_id: Optional[int] = None
    full_name: Optional[str] = None
    email: Optional[str] = None
    shift: Optional[str] = None
    status: Optional[str] = None
    hire_date: Optional[date] = None
    phone: Optional[str] = None


class StaffUpdateModel(BaseModel):
    full_name: Optional[str] = None
    email: Optional[str] = None
    shift: Optional[str] = None
    status: Optional[str] = None
    hire_date: Optional[date] = None
    phone: Optional[str] = None


class StaffModel(BaseModel):
    staff_id: int
    full_name: str
    email: str
    shift: str
    status: str
    hire_date: Optional[str] = None
    phone: Optional[str] = None


class BorrowCreateModel(BaseModel):
    borrow_id: Optional[int] = None
    borrow_date: Optional[date] = None
    due_date: Optional[date] = None
    member_id: Optional[int] = None
    staff_id: Optional[int] = None
    book_id: Optional[int] = None


class BorrowingModel(BaseModel):
    borrow_id: int
    borrow_date: str
    due_date: str
    return_date: Optional[str] = None
    status: str
    fine_amount: float
    book_id: int
    member_id: int
    staff_id: int
    member_name: Optional[str] = None
    staff_name: Optional[str] = None
    book_title: Optional[str] = None


class ReturnResponse(BaseModel):
    record: BorrowingModel
    late_days: int
    changed: bool
    message: str


class CanDeleteResponse(BaseModel):
    entity: str
    entity_id: int
    can_delete: bool


# --- Security ---
api_key_header = APIKeyHeader(name="X-API-Key")


def get_api_key(api_key: str = Security(api_key_header)):
    """Dependency validating the shared API key on mutating routes."""
    if api_key == settings.api_key:
        return api_key
    raise HTTPException(status_code=403, detail="Could not validate credentials")


def get_library(request: Request) -> Library:
    library = request.app.state.library
    if library is None:
        library = request.app.state.library = Library()
    return library


def _error_payload(exc: LibraryError) -> Dict[str, Any]:
    payload: Dict[str, Any] = {"detail": exc.message, "kind": exc.kind}
    for attr in ("reason", "constraint"):
        if hasattr(exc, attr):
            payload[attr] = getattr(exc, attr)
    return payload


def _clean(model: BaseModel) -> Dict[str, Any]:
    return {k: v for k, v in model.model_dump().items() if v is not None}


def create_app(library: Optional[Library] = None) -> FastAPI:
    """Build the API around ``library`` (created lazily from settings when omitted)."""
    logging.basicConfig(level=settings.log_level)
    app = FastAPI(title=settings.app_name, version=settings.app_version, debug=settings.debug)
    app.state.library = library
    protected = [Depends(get_api_key)]

    @app.exception_handler(LibraryError)
    async def library_error_handler(request: Request, exc: LibraryError):
        status = _STATUS_BY_KIND.get(exc.kind, 400)
        if status >= 500:
            logger.error("%s %s failed: %s", request.method, request.url.path, exc)
        return JSONResponse(status_code=status, content=_error_payload(exc))

    # --- Health check ---
    @app.get("/health")
    def health(lib: Library = Depends(get_library)):
        db_ok = True
        try:
            with lib.db.transaction(write=False) as conn:
                conn.execute("SELECT 1")
        except LibraryError:
            db_ok = False
        return {"status": "healthy" if db_ok else "degraded", "db": db_ok,
                "timestamp": datetime.utcnow().isoformat() + "Z"}

    # --- Books ---
    @app.get("/books", response_model=List[BookModel])
    def list_books(available: bool = Query(False), lib: Library = Depends(get_library)):
        return [b.to_dict() for b in lib.catalog.list_books(available_only=available)]

    @app.get("/books/{book_id}", response_model=BookModel)
    def get_book(book_id: int, lib: Library = Depends(get_library)):
        return lib.catalog.get_book(book_id).to_dict()

    @app.post("/books", response_model=BookModel, status_code=201, dependencies=protected)
    def add_book(payload: BookCreateModel, lib: Library = Depends(get_library)):
        return lib.catalog.add_book(_clean(payload)).to_dict()

    @app.put("/books/{book_id}", response_model=BookModel, dependencies=protected)
    def update_book(book_id: int, update: BookUpdateModel, lib: Library = Depends(get_library)):
        return lib.catalog.update_book(book_id, **_clean(update)).to_dict()

    @app.delete("/books/{book_id}", dependencies=protected)
    def delete_book(book_id: int, lib: Library = Depends(get_library)):
        lib.catalog.delete_book(book_id)
        return {"message": "Book deleted successfully."}

    @app.get("/books/{book_id}/can-delete", response_model=CanDeleteResponse)
    def can_delete_book(book_id: int, lib: Library = Depends(get_library)):
        return {"entity": "book", "entity_id": book_id, "can_delete": lib.guard.can_delete_book(book_id)}

    # --- Members ---
    @app.get("/members", response_model=List[MemberModel])
    def list_members(lib: Library = Depends(get_library)):
        return lib.catalog.list_members()

    @app.get("/members/{member_id}", response_model=MemberModel)
    def get_member(member_id: int, lib: Library = Depends(get_library)):
        return lib.catalog.get_member(member_id).to_dict()

    @app.post("/members", response_model=MemberModel, status_code=201, dependencies=protected)
    def add_member(payload: MemberCreateModel, lib: Library = Depends(get_library)):
        return lib.catalog.add_member(_clean(payload)).to_dict()

    @app.put("/members/{member_id}", response_model=MemberModel, dependencies=protected)
    def update_member(member_id: int, update: MemberUpdateModel, lib: Library = Depends(get_library)):
        return lib.catalog.update_member(member_id, **_clean(update)).to_dict()

    @app.delete("/members/{member_id}", dependencies=protected)
    def delete_member(member_id: int, lib: Library = Depends(get_library)):
        lib.catalog.delete_member(member_id)
        return {"message": "Member deleted successfully."}

    @app.get("/members/{member_id}/can-delete", response_model=CanDeleteResponse)
    def can_delete_member(member_id: int, lib: Library = Depends(get_library)):
        return {"entity": "member", "entity_id": member_id, "can_delete": lib.guard.can_delete_member(member_id)}

    # --- Staff ---
    @app.get("/staff", response_model=List[StaffModel])
    def list_staff(lib: Library = Depends(get_library)):
        return [s.to_dict() for s in lib.catalog.list_staff()]

    @app.get("/staff/{staff_id}", response_model=StaffModel)
    def get_staff(staff_id: int, lib: Library = Depends(get_library)):
        return lib.catalog.get_staff(staff_id).to_dict()

    @app.post("/staff", response_model=StaffModel, status_code=201, dependencies=protected)
    def add_staff(payload: StaffCreateModel, lib: Library = Depends(get_library)):
        return lib.catalog.add_staff(_clean(payload)).to_dict()

    @app.put("/staff/{staff_id}", response_model=StaffModel, dependencies=protected)
    def update_staff(staff_id: int, update: StaffUpdateModel, lib: Library = Depends(get_library)):
        return lib.catalog.update_staff(staff_id, **_clean(update)).to_dict()

    @app.delete("/staff/{staff_id}", dependencies=protected)
    def delete_staff(staff_id: int, lib: Library = Depends(get_library)):
        lib.catalog.delete_staff(staff_id)
        return {"message": "Staff deleted successfully."}

    @app.get("/staff/{staff_id}/can-delete", response_model=CanDeleteResponse)
    def can_delete_staff(staff_id: int, lib: Library = Depends(get_library)):
        return {"entity": "staff", "entity_id": staff_id, "can_delete": lib.guard.can_delete_staff(staff_id)}

    # --- Borrowing ---
    @app.get("/borrowings", response_model=List[BorrowingModel])
    def list_borrowings(overdue: bool = Query(False), lib: Library = Depends(get_library)):
        return lib.borrowing.list_borrowings(overdue_only=overdue)

    @app.get("/borrowings/overdue", response_model=List[BorrowingModel])
    def list_overdue(lib: Library = Depends(get_library)):
        return [r.to_dict() for r in lib.borrowing.list_overdue()]

    @app.get("/borrowings/{borrow_id}", response_model=BorrowingModel)
    def get_borrowing(borrow_id: int, lib: Library = Depends(get_library)):
        return lib.borrowing.get(borrow_id).to_dict()

    @app.post("/borrowings", response_model=BorrowingModel, status_code=201, dependencies=protected)
    def create_borrowing(payload: BorrowCreateModel, lib: Library = Depends(get_library)):
        request = BorrowRequest.from_mapping(payload.model_dump())
        return lib.borrowing.create(request).to_dict()

    @app.post("/borrowings/{borrow_id}/return", response_model=ReturnResponse, dependencies=protected)
    def return_borrowing(borrow_id: int, lib: Library = Depends(get_library)):
        result = lib.borrowing.return_borrowing(borrow_id)
        record = result.record
        if result.changed:
            message = f"Book returned successfully. Status: {record.status.value}, Fine: {record.fine_amount}"
        else:
            message = "Return skipped: this borrowing is already closed."
        return {"record": record.to_dict(), "late_days": result.late_days,
                "changed": result.changed, "message": message}

    @app.delete("/borrowings/{borrow_id}", dependencies=protected)
    def delete_borrowing(borrow_id: int, lib: Library = Depends(get_library)):
        lib.borrowing.delete(borrow_id)
        return {"message": "Borrowing deleted successfully."}

    # --- Reports ---
    def _summary_filter(
        member_id: Optional[int] = Query(None),
        status: Optional[str] = Query(None),
        overdue: bool = Query(False),
        q: str = Query(""),
    ) -> SummaryFilter:
        return SummaryFilter(member_id=member_id, status=status, overdue_only=overdue, query=q)

    @app.get("/reports/member-books")
    def member_books(flt: SummaryFilter = Depends(_summary_filter), lib: Library = Depends(get_library)):
        return member_book_summary(lib.db, flt)

    @app.get("/reports/member-books/export")
    def member_books_export(flt: SummaryFilter = Depends(_summary_filter), lib: Library = Depends(get_library)):
        content = export_csv(member_book_summary(lib.db, flt))
        return Response(
            content=content,
            media_type="text/csv",
            headers={"Content-Disposition": "attachment; filename=member_books_summary.csv"},
        )

    return app


app = create_app()
