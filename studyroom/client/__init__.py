from studyroom.client.gateway import LocalRoomGateway, RoomGateway
from studyroom.client.http import HttpEventStream, HttpRoomGateway
from studyroom.client.reconciler import RoomState, RoomSync

__all__ = [
    "RoomGateway",
    "LocalRoomGateway",
    "HttpRoomGateway",
    "HttpEventStream",
    "RoomState",
    "RoomSync",
]
