from fastapi import APIRouter, Depends, HTTPException

from newsroom.core.auth import AuthenticatedUser, get_current_user
from newsroom.core.context import ServiceContext, get_context
from newsroom.schemas.entities import (
    DailyEdition,
    DailyEditionWithEditions,
    EditionWithArticles,
    NewspaperEdition,
)

router = APIRouter()


@router.get("/editions/latest", response_model=NewspaperEdition)
def get_latest_edition(
    context: ServiceContext = Depends(get_context),
    current_user: AuthenticatedUser = Depends(get_current_user),
):
    edition = context.editor.get_latest_newspaper_edition(current_user.id)
    if not edition:
        raise HTTPException(status_code=404, detail="No newspaper editions yet")
    return edition


@router.get("/editions/{edition_id}", response_model=EditionWithArticles)
def get_edition(
    edition_id: str,
    context: ServiceContext = Depends(get_context),
    current_user: AuthenticatedUser = Depends(get_current_user),
):
    """Edition with its articles; deleted articles are left out."""
    result = context.editor.get_edition_with_articles(current_user.id, edition_id)
    if not result:
        raise HTTPException(status_code=404, detail=f"Edition {edition_id} not found")
    return result


@router.get("/daily-editions/latest", response_model=DailyEdition)
def get_latest_daily_edition(
    context: ServiceContext = Depends(get_context),
    current_user: AuthenticatedUser = Depends(get_current_user),
):
    daily = context.editor.get_latest_daily_edition(current_user.id)
    if not daily:
        raise HTTPException(status_code=404, detail="No daily editions yet")
    return daily


@router.get("/daily-editions/{daily_edition_id}", response_model=DailyEditionWithEditions)
def get_daily_edition(
    daily_edition_id: str,
    context: ServiceContext = Depends(get_context),
    current_user: AuthenticatedUser = Depends(get_current_user),
):
    result = context.editor.get_daily_edition_with_editions(current_user.id, daily_edition_id)
    if not result:
        raise HTTPException(
            status_code=404, detail=f"Daily edition {daily_edition_id} not found"
        )
    return result
