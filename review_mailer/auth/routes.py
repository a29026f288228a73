"""Authentication routes for the admin pages."""

from fastapi import APIRouter, Depends, Form, Request
from fastapi.responses import HTMLResponse, RedirectResponse
from sqlalchemy.orm import Session

from ..audit.service import audit
from ..database.base import get_db
from ..rate_limit import limiter
from .service import authenticate_user

router = APIRouter(tags=["auth"])


@router.get("/login", response_class=HTMLResponse)
def login_page(request: Request):
    if request.session.get("user_id"):
        return RedirectResponse(url="/admin/jobs", status_code=303)
    return request.app.state.templates.TemplateResponse(request, "login.html")


@router.post("/login")
@limiter.limit("10/minute")
def login(
    request: Request,
    email: str = Form(...),
    password: str = Form(...),
    db: Session = Depends(get_db),
):
    user = authenticate_user(db, email, password)
    if not user:
        audit(db, request, "login_failed", f"email={email}")
        db.commit()
        return request.app.state.templates.TemplateResponse(
            request,
            "login.html",
            {"error": "Invalid credentials"},
            status_code=401,
        )
    request.session["user_id"] = str(user.id)
    audit(db, request, "login", f"email={user.email}", user_id=user.id)
    db.commit()
    return RedirectResponse(url="/admin/jobs", status_code=303)


@router.post("/logout")
def logout(request: Request, db: Session = Depends(get_db)):
    audit(db, request, "logout")
    db.commit()
    request.session.clear()
    return RedirectResponse(url="/login", status_code=303)
