import asyncio
import types

import pytest
from google.protobuf import struct_pb2

from protoc_gen_rest_adapter import generator

USER_PROTO = """
syntax = "proto3";
package users.v1;

import "google/api/annotations.proto";

// User management
service UserService {
  rpc GetUser(GetUserRequest) returns (User) {
    option (google.api.http) = {
      get: "/v1/users/{user_id}"
    };
  };

  rpc ListUsers(ListUsersRequest) returns (ListUsersResponse) {
    option (google.api.http) = { get: "/v1/users" };
  };

  rpc CreateUser(CreateUserRequest) returns (User) {
    option (google.api.http) = {
      post: "/v1/users"
      body: "*"
    };
  };

  rpc UpdateUser(UpdateUserRequest) returns (User) {
    option (google.api.http) = {
      patch: "/v1/users/{user.id}"
      body: "user"
    };
  };

  rpc DeleteUser(DeleteUserRequest) returns (google.protobuf.Empty) {
    option (google.api.http) = { delete: "/v1/users/{user_id}" };
  };

  rpc Ping(PingRequest) returns (PingResponse) {}
}

message User {
  string id = 1;
  string name = 2;
}
"""


class FakeUserClient:
    """Echoes the request message back and records every call."""

    def __init__(self, error=None):
        self.calls = []
        self.error = error

    async def _call(self, name, message):
        self.calls.append((name, message))
        if self.error is not None:
            raise self.error
        return message

    async def GetUser(self, message):
        return await self._call("GetUser", message)

    async def ListUsers(self, message):
        return await self._call("ListUsers", message)

    async def CreateUser(self, message):
        return await self._call("CreateUser", message)

    async def UpdateUser(self, message):
        return await self._call("UpdateUser", message)

    async def DeleteUser(self, message):
        return await self._call("DeleteUser", message)


def load_adapter_module(content):
    module = types.ModuleType("rest_adapter")
    exec(compile(content, "rest_adapter.py", "exec"), module.__dict__)
    return module


def run(coroutine):
    return asyncio.run(coroutine)


@pytest.fixture
def user_proto():
    return USER_PROTO


@pytest.fixture
def messages():
    # Struct accepts any JSON object, which keeps the payload visible in responses
    return types.SimpleNamespace(
        GetUserRequest=struct_pb2.Struct,
        ListUsersRequest=struct_pb2.Struct,
        CreateUserRequest=struct_pb2.Struct,
        UpdateUserRequest=struct_pb2.Struct,
        DeleteUserRequest=struct_pb2.Struct,
    )


@pytest.fixture
def adapter_module(user_proto):
    return load_adapter_module(generator.generate([user_proto]).content)
