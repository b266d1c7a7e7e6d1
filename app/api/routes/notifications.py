from fastapi import APIRouter, Depends, HTTPException, Request, Response, status

from app.schemas.auth import CurrentUserResponse
from app.schemas.notification import NotificationListResponse
from app.services.auth_service import require_current_user
from app.services.notification_center import NotificationCenter

router = APIRouter(prefix="/notifications", tags=["notifications"])


def get_notification_center(request: Request) -> NotificationCenter:
    return request.app.state.notification_center


@router.get("", response_model=NotificationListResponse)
def list_notifications(
    current_user: CurrentUserResponse = Depends(require_current_user),
    center: NotificationCenter = Depends(get_notification_center),
) -> NotificationListResponse:
    return NotificationListResponse(items=center.list_active(recipient_user_id=current_user.id))


@router.delete("/{notification_id}", status_code=status.HTTP_204_NO_CONTENT)
def dismiss_notification(
    notification_id: str,
    current_user: CurrentUserResponse = Depends(require_current_user),
    center: NotificationCenter = Depends(get_notification_center),
) -> Response:
    if not center.dismiss(notification_id, recipient_user_id=current_user.id):
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Notification not found.",
        )
    return Response(status_code=status.HTTP_204_NO_CONTENT)
