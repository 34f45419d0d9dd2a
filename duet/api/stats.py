from fastapi import APIRouter, Depends

from duet.api.deps import get_container, require_profile
from duet.core.bootstrap import Container
import duet.db.schemas as s

router = APIRouter(prefix="/stats", tags=["stats"])


@router.get("/weekly", response_model=s.WeeklyStats)
async def weekly_stats(
    container: Container = Depends(get_container),
    identity: s.Identity = Depends(require_profile),
):
    """Top songs per person over the trailing week, plus songs both of you favorited."""
    return await container.weekly.compute(identity.profile, identity.partner)
