from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from lingoclass.dependencies import get_current_user, get_db, require_admin
from lingoclass.models import TransactionType, User
from lingoclass.schemas.credits import CreditGrantForm, CreditSpendForm, PackageForm, PackageUpdateForm, PurchaseForm
from lingoclass.services import ledger
from lingoclass.utils import paginate

router = APIRouter(prefix="/credits", tags=["credits"])


@router.get("/balance", name="credits.balance")
def balance(current_user: User = Depends(get_current_user), session: Session = Depends(get_db)):
    return ledger.get_balance(session, current_user.id).to_dict()


@router.get("/transactions", name="credits.transactions")
def transactions(
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    type: Optional[TransactionType] = None,
    current_user: User = Depends(get_current_user),
    session: Session = Depends(get_db),
):
    items, total = ledger.list_transactions(
        session, current_user.id, limit=limit, offset=offset, transaction_type=type
    )
    return {"items": [t.to_dict() for t in items], **paginate(limit, offset, total)}


@router.post("/spend", name="credits.spend")
def spend(form: CreditSpendForm, current_user: User = Depends(get_current_user), session: Session = Depends(get_db)):
    balance, tx = ledger.spend_credits(
        session,
        current_user.id,
        form.amount,
        form.transaction_type,
        form.description,
        related_entity_id=form.related_entity_id,
        related_entity_type=form.related_entity_type,
    )
    return {"balance": balance.to_dict(), "transaction": tx.to_dict()}


@router.post("/grant", name="credits.grant")
def grant(form: CreditGrantForm, current_user: User = Depends(require_admin), session: Session = Depends(get_db)):
    """Admin grant or adjustment; the acting admin is kept in the transaction metadata."""
    balance, tx = ledger.add_credits(
        session,
        form.user_id,
        form.amount,
        form.transaction_type,
        form.description,
        metadata={**(form.metadata or {}), "granted_by": current_user.id},
    )
    return {"balance": balance.to_dict(), "transaction": tx.to_dict()}


@router.get("/packages", name="credits.packages")
def packages(session: Session = Depends(get_db)):
    return {"items": [p.to_dict() for p in ledger.list_packages(session)]}


@router.post("/packages", status_code=201, name="credits.create_package")
def create_package(form: PackageForm, current_user: User = Depends(require_admin), session: Session = Depends(get_db)):
    return ledger.create_package(session, **form.model_dump()).to_dict()


@router.patch("/packages/{package_id}", name="credits.update_package")
def update_package(
    package_id: int,
    form: PackageUpdateForm,
    current_user: User = Depends(require_admin),
    session: Session = Depends(get_db),
):
    return ledger.update_package(session, package_id, **form.model_dump(exclude_unset=True)).to_dict()


@router.post("/purchases", name="credits.purchase")
def purchase(form: PurchaseForm, current_user: User = Depends(get_current_user), session: Session = Depends(get_db)):
    """Records a captured payment. Replaying the same payment reference is harmless."""
    purchase, created = ledger.purchase_package(session, current_user.id, form.package_id, form.payment_reference)
    return {
        "purchase": purchase.to_dict(),
        "created": created,
        "balance": ledger.get_balance(session, current_user.id).to_dict(),
    }
