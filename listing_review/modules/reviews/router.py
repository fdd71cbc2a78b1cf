from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Request, status

from listing_review.core.errors import NotFoundError, ValidationError
from listing_review.modules.reviews.schemas import (
    ListingCreate,
    ReviewStatusResponse,
    ReviewSubmitResponse,
)
from listing_review.modules.reviews.service import ReviewService

router = APIRouter(prefix="/reviews", tags=["reviews"])


def get_review_service(request: Request) -> ReviewService:
    return request.app.state.container.review_service


@router.post("", response_model=ReviewSubmitResponse, status_code=status.HTTP_202_ACCEPTED)
async def submit_review(
    data: ListingCreate,
    service: ReviewService = Depends(get_review_service),
) -> ReviewSubmitResponse:
    try:
        return await service.submit(data)
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=e.message)


@router.get("/{review_id}", response_model=ReviewStatusResponse)
async def get_review_status(
    review_id: str,
    service: ReviewService = Depends(get_review_service),
) -> ReviewStatusResponse:
    try:
        return await service.get_status(review_id)
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=e.message)
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=e.message)
