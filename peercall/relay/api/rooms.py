# SPDX-License-Identifier: AGPL-3.0-or-later
# Copyright (c) 2025 PeerCall
#
# This file is part of PeerCall.
#
# PeerCall is free software: you can redistribute it and/or modify it under
# the terms of the GNU Affero General Public License as published by
# the Free Software Foundation, either version 3 of the License, or
# (at your option) any later version.
#
# PeerCall is distributed in the hope that it will be useful, but WITHOUT
# ANY WARRANTY; without even the implied warranty of MERCHANTABILITY
# or FITNESS FOR A PARTICULAR PURPOSE. See the GNU Affero General
# Public License for more details.

"""Room lookup endpoint used before joining."""

from fastapi import APIRouter, Query, Request
from pydantic import BaseModel

router = APIRouter(prefix="/api", tags=["rooms"])


class RoomExistsResponse(BaseModel):
    """Room existence check response."""

    exists: bool


@router.get("/check-room", response_model=RoomExistsResponse)
async def check_room(
    request: Request,
    room_id: str = Query("", alias="roomId", description="Room to look up"),
) -> RoomExistsResponse:
    """Report whether a room was created and may be joined."""
    return RoomExistsResponse(exists=request.app.state.registry.room_exists(room_id))
