import argparse
import sys
import xml.etree.ElementTree as ET
from collections.abc import Callable
from pathlib import Path

import pytest

GENERATOR_DIR = Path(__file__).resolve().parent.parent
if str(GENERATOR_DIR) not in sys.path:
    sys.path.insert(0, str(GENERATOR_DIR))

import vkbind_gen  # noqa: E402


SAMPLE_REGISTRY_XML = """<?xml version="1.0" encoding="UTF-8"?>
<registry>
    <comment>Trimmed Vulkan registry used by the test suite</comment>
    <platforms>
        <platform name="xlib" protect="VK_USE_PLATFORM_XLIB_KHR" comment="X Window System, Xlib client library"/>
        <platform name="mir" protect="VK_USE_PLATFORM_MIR_KHR" comment="Mir display server"/>
    </platforms>
    <tags>
        <tag name="KHR" author="Khronos" contact="Tom Olson @tomolson"/>
        <tag name="EXT" author="Multivendor" contact="Jon Leech @oddhack"/>
    </tags>
    <types>
        <type category="include" name="X11/Xlib.h"/>
        <type category="include" name="vk_platform">#include "vk_platform.h"</type>
        <type requires="X11/Xlib.h" name="Display"/>
        <type requires="X11/Xlib.h" name="Window"/>
        <type requires="vk_platform" name="void"/>
        <type requires="vk_platform" name="char"/>
        <type requires="vk_platform" name="float"/>
        <type requires="vk_platform" name="size_t"/>
        <type requires="vk_platform" name="uint32_t"/>
        <type requires="vk_platform" name="uint64_t"/>
        <comment>Version macros</comment>
        <type api="vulkan" category="define">// Version of this file
#define <name>VK_HEADER_VERSION</name> 42</type>
        <type api="vulkansc" category="define">// Version of this file
#define <name>VK_HEADER_VERSION</name> 17</type>
        <type category="define">
#define <name>VK_DEFINE_HANDLE</name>(object) typedef struct object##_T* object;</type>
        <type category="basetype">typedef <type>uint32_t</type> <name>VkFlags</name>;</type>
        <type category="basetype">typedef <type>uint64_t</type> <name>VkFlags64</name>;</type>
        <type category="basetype">typedef <type>uint32_t</type> <name>VkBool32</name>;</type>
        <type category="handle" objtypeenum="VK_OBJECT_TYPE_INSTANCE"><type>VK_DEFINE_HANDLE</type>(<name>VkInstance</name>)</type>
        <type category="handle" parent="VkInstance"><type>VK_DEFINE_HANDLE</type>(<name>VkPhysicalDevice</name>)</type>
        <type category="handle" parent="VkPhysicalDevice"><type>VK_DEFINE_HANDLE</type>(<name>VkDevice</name>)</type>
        <type category="handle" parent="VkDevice"><type>VK_DEFINE_HANDLE</type>(<name>VkQueue</name>)</type>
        <type category="handle" parent="VkDevice"><type>VK_DEFINE_HANDLE</type>(<name>VkCommandBuffer</name>)</type>
        <type category="handle" parent="VkInstance"><type>VK_DEFINE_HANDLE</type>(<name>VkSurfaceKHR</name>)</type>
        <type category="bitmask" requires="VkQueueFlagBits">typedef <type>VkFlags</type> <name>VkQueueFlags</name>;</type>
        <type category="bitmask" bitvalues="VkAccessFlagBits2">typedef <type>VkFlags64</type> <name>VkAccessFlags2</name>;</type>
        <type category="bitmask" name="VkAccessFlags2KHR" alias="VkAccessFlags2"/>
        <type category="enum" name="VkResult"/>
        <type category="enum" name="VkStructureType"/>
        <type category="enum" name="VkQueueFlagBits"/>
        <type category="enum" name="VkAccessFlagBits2"/>
        <type category="enum" name="VkColorSpaceKHR"/>
        <type category="funcpointer">typedef void (VKAPI_PTR *<name>PFN_vkVoidFunction</name>)(void);</type>
        <type category="funcpointer">typedef void* (VKAPI_PTR *<name>PFN_vkAllocationFunction</name>)(
    <type>void</type>*                                       pUserData,
    <type>size_t</type>                                      size);</type>
        <type category="funcpointer">
            <proto>typedef <type>VkBool32</type> (VKAPI_PTR *<name>PFN_vkDebugCallbackEXT</name>)</proto>
            <param><type>uint32_t</type> <name>flags</name></param>
            <param>const <type>char</type>* <name>pMessage</name></param>
        </type>
        <type category="struct" name="VkApplicationInfo">
            <member values="VK_STRUCTURE_TYPE_APPLICATION_INFO"><type>VkStructureType</type> <name>sType</name></member>
            <member optional="true">const <type>void</type>*     <name>pNext</name></member>
            <member optional="true" len="null-terminated">const <type>char</type>*     <name>pApplicationName</name></member>
            <member><type>uint32_t</type>        <name>apiVersion</name><comment>the API version</comment></member>
            <member api="vulkansc"><type>uint32_t</type> <name>scOnly</name></member>
        </type>
        <type category="struct" name="VkPhysicalDeviceProperties" returnedonly="true">
            <member><type>uint32_t</type> <name>apiVersion</name></member>
            <member><type>char</type> <name>deviceName</name>[<enum>VK_MAX_PHYSICAL_DEVICE_NAME_SIZE</enum>]</member>
        </type>
        <type category="struct" name="VkBaseOutStructure">
            <member><type>VkStructureType</type> <name>sType</name></member>
            <member>struct <type>VkBaseOutStructure</type>* <name>pNext</name></member>
        </type>
        <type category="union" name="VkClearColorValue">
            <member><type>float</type> <name>float32</name>[4]</member>
            <member><type>uint32_t</type> <name>uint32</name>[4]</member>
        </type>
        <type category="struct" name="VkMemoryBarrier2">
            <member values="VK_STRUCTURE_TYPE_MEMORY_BARRIER_2"><type>VkStructureType</type> <name>sType</name></member>
            <member optional="true">const <type>void</type>* <name>pNext</name></member>
            <member optional="true"><type>VkAccessFlags2</type> <name>srcAccessMask</name></member>
        </type>
        <type category="struct" name="VkMemoryBarrier2KHR" alias="VkMemoryBarrier2"/>
        <type category="struct" name="VkSurfaceFormatKHR" returnedonly="true">
            <member><type>VkColorSpaceKHR</type> <name>colorSpace</name></member>
        </type>
        <type category="struct" name="VkXlibSurfaceCreateInfoKHR">
            <member values="VK_STRUCTURE_TYPE_XLIB_SURFACE_CREATE_INFO_KHR"><type>VkStructureType</type> <name>sType</name></member>
            <member><type>Display</type>* <name>dpy</name></member>
            <member><type>Window</type> <name>window</name></member>
        </type>
    </types>
    <enums name="API Constants" type="constants" comment="Vulkan hardcoded constants">
        <enum type="uint32_t" value="256" name="VK_MAX_PHYSICAL_DEVICE_NAME_SIZE"/>
        <enum type="uint32_t" name="VK_MAX_DEVICE_NAME_SIZE_ALIAS" alias="VK_MAX_PHYSICAL_DEVICE_NAME_SIZE"/>
    </enums>
    <enums name="VkResult" type="enum">
        <enum value="0" name="VK_SUCCESS" comment="Command completed successfully"/>
        <enum value="-3" name="VK_ERROR_INITIALIZATION_FAILED"/>
    </enums>
    <enums name="VkStructureType" type="enum">
        <enum value="0" name="VK_STRUCTURE_TYPE_APPLICATION_INFO"/>
    </enums>
    <enums name="VkQueueFlagBits" type="bitmask">
        <enum bitpos="0" name="VK_QUEUE_GRAPHICS_BIT"/>
        <enum bitpos="1" name="VK_QUEUE_COMPUTE_BIT"/>
    </enums>
    <enums name="VkAccessFlagBits2" type="bitmask" bitwidth="64">
        <enum value="0" name="VK_ACCESS_2_NONE"/>
        <enum bitpos="0" name="VK_ACCESS_2_INDIRECT_COMMAND_READ_BIT"/>
        <enum bitpos="33" name="VK_ACCESS_2_SHADER_SAMPLED_READ_BIT"/>
    </enums>
    <enums name="VkColorSpaceKHR" type="enum">
        <enum value="0" name="VK_COLOR_SPACE_SRGB_NONLINEAR_KHR"/>
    </enums>
    <commands comment="Vulkan command definitions">
        <command successcodes="VK_SUCCESS" errorcodes="VK_ERROR_INITIALIZATION_FAILED">
            <proto><type>VkResult</type> <name>vkCreateInstance</name></proto>
            <param>const <type>VkApplicationInfo</type>* <name>pApplicationInfo</name></param>
            <param><type>VkInstance</type>* <name>pInstance</name></param>
        </command>
        <command>
            <proto><type>PFN_vkVoidFunction</type> <name>vkGetInstanceProcAddr</name></proto>
            <param optional="true"><type>VkInstance</type> <name>instance</name></param>
            <param len="null-terminated">const <type>char</type>* <name>pName</name></param>
        </command>
        <command>
            <proto><type>PFN_vkVoidFunction</type> <name>vkGetDeviceProcAddr</name></proto>
            <param><type>VkDevice</type> <name>device</name></param>
            <param len="null-terminated">const <type>char</type>* <name>pName</name></param>
        </command>
        <command>
            <proto><type>void</type> <name>vkGetPhysicalDeviceProperties</name></proto>
            <param><type>VkPhysicalDevice</type> <name>physicalDevice</name></param>
            <param><type>VkPhysicalDeviceProperties</type>* <name>pProperties</name></param>
        </command>
        <command successcodes="VK_SUCCESS">
            <proto><type>VkResult</type> <name>vkEnumerateInstanceVersion</name></proto>
            <param><type>uint32_t</type>* <name>pApiVersion</name></param>
        </command>
        <command>
            <proto><type>void</type> <name>vkCmdPipelineBarrier2</name></proto>
            <param externsync="true"><type>VkCommandBuffer</type> <name>commandBuffer</name></param>
            <param>const <type>VkMemoryBarrier2</type>* <name>pBarrier</name></param>
        </command>
        <command name="vkCmdPipelineBarrier2KHR" alias="vkCmdPipelineBarrier2"/>
        <command successcodes="VK_SUCCESS">
            <proto><type>VkResult</type> <name>vkCreateXlibSurfaceKHR</name></proto>
            <param><type>VkInstance</type> <name>instance</name></param>
            <param>const <type>VkXlibSurfaceCreateInfoKHR</type>* <name>pCreateInfo</name></param>
            <param><type>VkSurfaceKHR</type>* <name>pSurface</name></param>
        </command>
        <command api="vulkansc">
            <proto><type>void</type> <name>vkScOnlyCommand</name></proto>
        </command>
    </commands>
    <feature api="vulkan,vulkansc" name="VK_VERSION_1_0" number="1.0" comment="Vulkan core API interface definitions">
        <require comment="Header boilerplate">
            <type name="vk_platform"/>
            <type name="VK_HEADER_VERSION"/>
        </require>
        <require comment="API constants">
            <enum name="VK_MAX_PHYSICAL_DEVICE_NAME_SIZE"/>
        </require>
        <require comment="Device initialization">
            <type name="VkQueueFlags"/>
            <type name="VkBaseOutStructure"/>
            <type name="VkClearColorValue"/>
            <type name="PFN_vkAllocationFunction"/>
            <command name="vkCreateInstance"/>
            <command name="vkGetInstanceProcAddr"/>
            <command name="vkGetDeviceProcAddr"/>
            <command name="vkGetPhysicalDeviceProperties"/>
        </require>
    </feature>
    <feature api="vulkan" name="VK_VERSION_1_1" number="1.1">
        <require>
            <command name="vkEnumerateInstanceVersion"/>
        </require>
    </feature>
    <feature api="vulkan" name="VK_VERSION_1_3" number="1.3">
        <require>
            <enum extends="VkStructureType" extnumber="315" offset="2" name="VK_STRUCTURE_TYPE_MEMORY_BARRIER_2"/>
            <type name="VkMemoryBarrier2"/>
            <command name="vkCmdPipelineBarrier2"/>
        </require>
    </feature>
    <feature api="vulkansc" name="VKSC_VERSION_1_0" number="1.0">
        <require>
            <command name="vkScOnlyCommand"/>
        </require>
    </feature>
    <extensions>
        <extension name="VK_KHR_surface" number="1" type="instance" author="KHR" supported="vulkan,vulkansc">
            <require>
                <enum value="25" name="VK_KHR_SURFACE_SPEC_VERSION"/>
                <enum value="&quot;VK_KHR_surface&quot;" name="VK_KHR_SURFACE_EXTENSION_NAME"/>
                <enum offset="0" extends="VkResult" dir="-" name="VK_ERROR_SURFACE_LOST_KHR"/>
                <type name="VkSurfaceKHR"/>
                <type name="VkSurfaceFormatKHR"/>
            </require>
        </extension>
        <extension name="VK_KHR_xlib_surface" number="5" type="instance" depends="VK_KHR_surface" platform="xlib" author="KHR" supported="vulkan">
            <require>
                <enum value="6" name="VK_KHR_XLIB_SURFACE_SPEC_VERSION"/>
                <enum value="&quot;VK_KHR_xlib_surface&quot;" name="VK_KHR_XLIB_SURFACE_EXTENSION_NAME"/>
                <enum offset="0" extends="VkStructureType" name="VK_STRUCTURE_TYPE_XLIB_SURFACE_CREATE_INFO_KHR"/>
                <type name="VkXlibSurfaceCreateInfoKHR"/>
                <command name="vkCreateXlibSurfaceKHR"/>
            </require>
        </extension>
        <extension name="VK_KHR_mir_surface" number="8" type="instance" platform="mir" supported="vulkan">
            <require>
                <enum value="4" name="VK_KHR_MIR_SURFACE_SPEC_VERSION"/>
            </require>
        </extension>
        <extension name="VK_KHR_synchronization2" number="315" type="device" author="KHR" supported="vulkan" promotedto="VK_VERSION_1_3">
            <require>
                <enum value="1" name="VK_KHR_SYNCHRONIZATION_2_SPEC_VERSION"/>
                <enum extends="VkStructureType" name="VK_STRUCTURE_TYPE_MEMORY_BARRIER_2_KHR" alias="VK_STRUCTURE_TYPE_MEMORY_BARRIER_2"/>
                <enum bitpos="34" extends="VkAccessFlagBits2" name="VK_ACCESS_2_EXTRA_BIT_KHR"/>
                <enum extends="VkAccessFlagBits2" name="VK_ACCESS_2_SHADER_SAMPLED_READ_BIT_KHR" alias="VK_ACCESS_2_SHADER_SAMPLED_READ_BIT"/>
                <type name="VkMemoryBarrier2KHR"/>
                <type name="VkAccessFlags2KHR"/>
                <command name="vkCmdPipelineBarrier2KHR"/>
            </require>
        </extension>
        <extension name="VK_EXT_disabled_feature" number="99" supported="disabled">
            <require>
                <enum value="0" name="VK_EXT_DISABLED_FEATURE_SPEC_VERSION"/>
            </require>
        </extension>
        <extension name="VK_EXT_debug_callback" number="129" type="instance" author="EXT" supported="vulkan">
            <require>
                <enum value="1" name="VK_EXT_DEBUG_CALLBACK_SPEC_VERSION"/>
                <enum offset="0" extends="VkStructureType" name="VK_STRUCTURE_TYPE_DEBUG_CALLBACK_CREATE_INFO_EXT"/>
                <type name="PFN_vkDebugCallbackEXT"/>
            </require>
        </extension>
    </extensions>
</registry>
"""


@pytest.fixture
def sample_registry_xml() -> str:
    return SAMPLE_REGISTRY_XML


@pytest.fixture
def sample_registry() -> vkbind_gen.Registry:
    root = vkbind_gen.parse_registry_document(SAMPLE_REGISTRY_XML)
    return vkbind_gen.reorder_registry(vkbind_gen.build_registry(root))


@pytest.fixture
def make_registry_root() -> Callable[[str], ET.Element]:
    def _make_registry_root(inner_xml: str) -> ET.Element:
        return ET.fromstring(f"<registry>{inner_xml}</registry>")

    return _make_registry_root


@pytest.fixture
def make_registry(
    make_registry_root: Callable[[str], ET.Element],
) -> Callable[[str], vkbind_gen.Registry]:
    def _make_registry(inner_xml: str) -> vkbind_gen.Registry:
        return vkbind_gen.build_registry(make_registry_root(inner_xml))

    return _make_registry


@pytest.fixture
def existing_paths(tmp_path: Path) -> dict[str, Path]:
    vk_xml = tmp_path / "vk.xml"
    vk_xml.write_text(SAMPLE_REGISTRY_XML, encoding="utf-8")

    template = tmp_path / "vkbind_template.h"
    template.write_text("vkbind - v<<vulkan_version>>.<<revision>> - <<date>>\n", encoding="utf-8")

    output = tmp_path / "out" / "vkbind.h"
    return {
        "vk_xml": vk_xml,
        "template": template,
        "output": output,
    }


@pytest.fixture
def missing_path(tmp_path: Path) -> Path:
    return tmp_path / "missing"


@pytest.fixture
def make_args(existing_paths: dict[str, Path]) -> Callable[..., argparse.Namespace]:
    def _make_args(**overrides: object) -> argparse.Namespace:
        base_args: dict[str, object] = {
            "vk_xml": existing_paths["vk_xml"],
            "template": existing_paths["template"],
            "output": existing_paths["output"],
            "no_download": False,
            "dump": False,
        }
        base_args.update(overrides)
        return argparse.Namespace(**base_args)

    return _make_args
